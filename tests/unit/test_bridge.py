"""
test_bridge.py - Unit tests for cross-ledger bridge halves and adapter

Tests:
- BridgeMessage content-addressed ids
- compute_bridge_burn / compute_bridge_mint pure halves
- BridgeAdapter send/receive with and without a channel
- Role gating, throttling and duplicate handling
"""

import pytest
from datetime import datetime, timedelta

from rebase_ledger import (
    AccountState, BridgeMessage, BridgeAdapter, Ledger, RateAuthority,
    RateLimiterConfig, ExecuteResult, OriginType,
    InsufficientBalance, RateLimitExceeded, Unauthorized,
    MAX_AMOUNT, compute_bridge_burn, compute_bridge_mint,
)
from tests.fake_view import FakeView, T0, RATE, OWNER, advance, snapshot


ONE = 10**18
HOUR = 3600


class TestBridgeMessage:

    def test_id_is_deterministic(self):
        a = BridgeMessage.create("s", "d", "alice", "bob", 100, RATE, 0, T0)
        b = BridgeMessage.create("s", "d", "alice", "bob", 100, RATE, 0, T0)
        assert a == b
        assert a.message_id.startswith("msg:")

    def test_nonce_distinguishes_identical_moves(self):
        a = BridgeMessage.create("s", "d", "alice", "bob", 100, RATE, 0, T0)
        b = BridgeMessage.create("s", "d", "alice", "bob", 100, RATE, 1, T0)
        assert a.message_id != b.message_id

    def test_rate_is_part_of_identity(self):
        a = BridgeMessage.create("s", "d", "alice", "bob", 100, RATE, 0, T0)
        b = BridgeMessage.create("s", "d", "alice", "bob", 100, RATE - 1, 0, T0)
        assert a.message_id != b.message_id


class TestPureHalves:

    def test_burn_captures_rate_and_settles(self):
        view = FakeView({"alice": AccountState(ONE, RATE, T0)}, T0 + timedelta(seconds=HOUR))
        pending, amount, rate = compute_bridge_burn(view, "alice", 1000)
        change = pending.change_for("alice")
        assert rate == RATE
        assert amount == 1000
        assert change.interest == RATE * HOUR
        assert change.new_state.principal == ONE + RATE * HOUR - 1000
        assert pending.origin.event_type == "BRIDGE_BURN"

    def test_burn_max_resolves_to_settled_balance(self):
        view = FakeView({"alice": AccountState(ONE, RATE, T0)}, T0 + timedelta(seconds=HOUR))
        pending, amount, _ = compute_bridge_burn(view, "alice", MAX_AMOUNT)
        assert amount == ONE + RATE * HOUR
        assert pending.change_for("alice").new_state.principal == 0

    def test_burn_insufficient(self):
        view = FakeView({"alice": AccountState(1000, RATE, T0)}, T0)
        with pytest.raises(InsufficientBalance):
            compute_bridge_burn(view, "alice", 1001)

    def test_mint_applies_carried_rate_to_new_account(self):
        view = FakeView({}, T0)
        change = compute_bridge_mint(view, "bob", 1000, RATE).change_for("bob")
        assert change.old_state is None
        assert change.new_state == AccountState(1000, RATE, T0)

    def test_mint_overrides_existing_rate(self):
        """Even a funded receiver takes the carried rate, after settling."""
        view = FakeView({"bob": AccountState(ONE, 1, T0)}, T0 + timedelta(seconds=HOUR))
        change = compute_bridge_mint(view, "bob", 10, RATE).change_for("bob")
        assert change.interest == HOUR
        assert change.new_state.rate == RATE
        assert change.new_state.principal == ONE + HOUR + 10

    def test_mint_rejects_invalid_rate(self):
        with pytest.raises(ValueError):
            compute_bridge_mint(FakeView({}, T0), "bob", 10, -1)


class TestAdapterWithoutChannel:

    def _ledgers(self):
        source = Ledger("source", RateAuthority(OWNER, RATE), T0, verbose=False)
        dest = Ledger("dest", RateAuthority(OWNER, RATE // 2), T0, verbose=False)
        source.grant_mint_and_burn_role(OWNER, "bridge_pool")
        dest.grant_mint_and_burn_role(OWNER, "bridge_pool")
        return source, dest

    def test_send_collects_outbox(self):
        source, dest = self._ledgers()
        source.fund("alice", 1000)
        adapter = BridgeAdapter(source)
        message = adapter.send("alice", "bob", 400, "dest")
        assert adapter.outbox == [message]
        assert adapter.nonce == 1
        assert source.principal_of("alice") == 600
        assert message.rate == RATE
        assert message.sent_at == T0

    def test_manual_delivery_and_duplicate(self):
        source, dest = self._ledgers()
        source.fund("alice", 1000)
        message = BridgeAdapter(source).send("alice", "bob", 400, "dest")

        receiver = BridgeAdapter(dest)
        assert receiver.receive(message) == ExecuteResult.APPLIED
        assert receiver.receive(message) == ExecuteResult.ALREADY_APPLIED
        assert dest.principal_of("bob") == 400
        assert dest.rate_of("bob") == RATE
        assert receiver.is_processed(message.message_id)
        assert dest.transaction_log[-1].origin.origin_type == OriginType.BRIDGE

    def test_every_message_has_a_burn_behind_it(self):
        """Refunding and re-sending at one instant burns each time."""
        source, dest = self._ledgers()
        adapter = BridgeAdapter(source)
        for _ in range(3):
            source.fund("alice", 10)
            adapter.send("alice", "bob", 10, "dest")

        assert len({m.message_id for m in adapter.outbox}) == 3
        assert source.principal_of("alice") == 0
        burns = [tx for tx in source.transaction_log if tx.origin.event_type == "BRIDGE_BURN"]
        assert len(burns) == 3

        receiver = BridgeAdapter(dest)
        for message in adapter.outbox:
            assert receiver.receive(message) == ExecuteResult.APPLIED
        assert dest.principal_of("bob") == 30

    def test_wrong_destination(self):
        source, dest = self._ledgers()
        source.fund("alice", 1000)
        message = BridgeAdapter(source).send("alice", "bob", 400, "elsewhere")
        with pytest.raises(ValueError):
            BridgeAdapter(dest).receive(message)

    def test_send_requires_role(self):
        source, _ = self._ledgers()
        source.fund("alice", 1000)
        adapter = BridgeAdapter(source, caller="stranger")
        with pytest.raises(Unauthorized):
            adapter.send("alice", "bob", 1, "dest")
        assert source.principal_of("alice") == 1000

    def test_receive_requires_role(self):
        source, dest = self._ledgers()
        source.fund("alice", 1000)
        message = BridgeAdapter(source).send("alice", "bob", 1, "dest")
        with pytest.raises(Unauthorized):
            BridgeAdapter(dest, caller="stranger").receive(message)
        assert not dest.has_account("bob")

    def test_zero_amount_rejected(self):
        source, _ = self._ledgers()
        source.fund("alice", 1000)
        before = snapshot(source)
        with pytest.raises(ValueError):
            BridgeAdapter(source).send("alice", "bob", 0, "dest")
        assert snapshot(source) == before


class TestAdapterWithChannel:

    def test_round_trip(self, bridge_setup):
        source = bridge_setup["source"]
        dest = bridge_setup["dest"]
        channel = bridge_setup["channel"]
        source.fund("alice", 1000)

        message = bridge_setup["source_adapter"].send(
            "alice", "bob", 1000, "dest", delay=timedelta(minutes=20),
        )
        assert channel.pending_count() == 1
        assert channel.deliver_due(T0) == []

        advance(dest, 1200)
        delivered = channel.deliver_due(dest.current_time)
        assert delivered == [(message, ExecuteResult.APPLIED)]
        assert dest.principal_of("bob") == 1000
        assert dest.get_account("bob").last_settled == T0 + timedelta(seconds=1200)

    def test_throttled_send_leaves_ledger_unchanged(self, bridge_setup):
        source = bridge_setup["source"]
        channel = bridge_setup["channel"]
        channel.configure_route("source", "dest", RateLimiterConfig(500, 1, True), T0)
        source.fund("alice", 1000)
        before = snapshot(source)

        with pytest.raises(RateLimitExceeded):
            bridge_setup["source_adapter"].send("alice", "bob", 501, "dest")
        assert snapshot(source) == before
        assert bridge_setup["source_adapter"].nonce == 0
        assert channel.pending_count() == 0

    def test_insufficient_balance_sends_nothing(self, bridge_setup):
        source = bridge_setup["source"]
        source.fund("alice", 10)
        with pytest.raises(InsufficientBalance):
            bridge_setup["source_adapter"].send("alice", "bob", 11, "dest")
        assert bridge_setup["channel"].pending_count() == 0

    def test_send_to_unknown_ledger(self, bridge_setup):
        source = bridge_setup["source"]
        source.fund("alice", 10)
        before = snapshot(source)
        with pytest.raises(ValueError, match="No receiver"):
            bridge_setup["source_adapter"].send("alice", "bob", 5, "nowhere")
        assert snapshot(source) == before
