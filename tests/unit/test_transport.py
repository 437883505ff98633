"""
test_transport.py - Unit tests for the in-memory bridge transport

Tests:
- RateLimiterConfig validation
- TokenBucket refill, consumption and wait hints
- MessageChannel ordering, dedup, and failure handling
"""

import pytest
from dataclasses import dataclass
from datetime import datetime, timedelta

from rebase_ledger import (
    RateLimiterConfig, TokenBucket, MessageChannel, DISABLED_LIMITER,
    BridgeMessage, ExecuteResult, LedgerError, RateLimitExceeded,
)


T0 = datetime(2025, 1, 1)


def _message(nonce=0, amount=100, dest="dest", source="source"):
    return BridgeMessage.create(source, dest, "alice", "bob", amount, 7, nonce, T0)


@dataclass
class RecordingReceiver:
    """Receiver that records messages and optionally fails."""
    received: list
    fail: bool = False

    def receive(self, message):
        if self.fail:
            raise RuntimeError("destination unavailable")
        self.received.append(message)
        return ExecuteResult.APPLIED


class TestRateLimiterConfig:

    def test_disabled_default(self):
        assert DISABLED_LIMITER == RateLimiterConfig(0, 0, False)

    @pytest.mark.parametrize("capacity,refill", [(100, 0), (100, 100), (100, 150)])
    def test_enabled_requires_refill_below_capacity(self, capacity, refill):
        with pytest.raises(ValueError):
            RateLimiterConfig(capacity, refill, True)

    def test_disabled_requires_zeroes(self):
        with pytest.raises(ValueError):
            RateLimiterConfig(100, 10, False)

    def test_valid_enabled(self):
        config = RateLimiterConfig(100, 10, True)
        assert config.enabled


class TestTokenBucket:

    def test_disabled_never_throttles(self):
        bucket = TokenBucket()
        bucket.consume(10**30, T0)
        assert "disabled" in repr(bucket)

    def test_starts_full(self):
        bucket = TokenBucket(RateLimiterConfig(100, 10, True), T0)
        assert bucket.available(T0) == 100

    def test_consume_and_refill(self):
        bucket = TokenBucket(RateLimiterConfig(100, 10, True), T0)
        bucket.consume(80, T0)
        assert bucket.available(T0) == 20
        assert bucket.available(T0 + timedelta(seconds=3)) == 50
        assert bucket.available(T0 + timedelta(seconds=60)) == 100

    def test_over_capacity_never_passes(self):
        bucket = TokenBucket(RateLimiterConfig(100, 10, True), T0)
        with pytest.raises(RateLimitExceeded) as exc:
            bucket.consume(101, T0)
        assert exc.value.wait_seconds == 0

    def test_wait_hint_rounds_up(self):
        bucket = TokenBucket(RateLimiterConfig(100, 10, True), T0)
        bucket.consume(95, T0)
        with pytest.raises(RateLimitExceeded) as exc:
            bucket.consume(21, T0)
        assert exc.value.wait_seconds == 2
        assert bucket.available(T0) == 5

    def test_check_does_not_consume(self):
        bucket = TokenBucket(RateLimiterConfig(100, 10, True), T0)
        bucket.check(100, T0)
        assert bucket.available(T0) == 100

    def test_set_config_caps_tokens(self):
        bucket = TokenBucket(RateLimiterConfig(100, 10, True), T0)
        bucket.set_config(RateLimiterConfig(50, 5, True), T0)
        assert bucket.available(T0) == 50

    def test_enabling_starts_full(self):
        bucket = TokenBucket(DISABLED_LIMITER, T0)
        bucket.set_config(RateLimiterConfig(100, 10, True), T0)
        assert bucket.available(T0) == 100


class TestMessageChannel:

    def test_submit_requires_registered_destination(self):
        channel = MessageChannel()
        with pytest.raises(ValueError, match="No receiver"):
            channel.submit(_message(), T0)

    def test_delivers_in_time_order(self):
        channel = MessageChannel()
        receiver = RecordingReceiver([])
        channel.register("dest", receiver)
        late = _message(nonce=0)
        early = _message(nonce=1)
        channel.submit(late, T0, timedelta(minutes=20))
        channel.submit(early, T0, timedelta(minutes=5))

        assert channel.peek_next() == T0 + timedelta(minutes=5)
        assert channel.deliver_due(T0 + timedelta(minutes=10)) == [(early, ExecuteResult.APPLIED)]
        assert channel.pending_count() == 1
        channel.deliver_due(T0 + timedelta(minutes=20))
        assert receiver.received == [early, late]
        assert channel.peek_next() is None

    def test_same_time_keeps_submission_order(self):
        channel = MessageChannel()
        receiver = RecordingReceiver([])
        channel.register("dest", receiver)
        messages = [_message(nonce=n) for n in range(3)]
        for m in messages:
            channel.submit(m, T0)
        channel.deliver_due(T0)
        assert receiver.received == messages

    def test_duplicate_submission_rejected(self):
        channel = MessageChannel()
        channel.register("dest", RecordingReceiver([]))
        message = _message()
        channel.submit(message, T0)
        with pytest.raises(ValueError, match="already submitted"):
            channel.submit(message, T0)
        assert channel.pending_count() == 1

    def test_negative_delay_rejected(self):
        channel = MessageChannel()
        channel.register("dest", RecordingReceiver([]))
        with pytest.raises(ValueError):
            channel.submit(_message(), T0, timedelta(seconds=-1))

    def test_route_budget_applies_per_route(self):
        channel = MessageChannel()
        channel.register("dest", RecordingReceiver([]))
        channel.register("other", RecordingReceiver([]))
        channel.configure_route("source", "dest", RateLimiterConfig(100, 1, True), T0)

        channel.submit(_message(nonce=0, amount=100), T0)
        with pytest.raises(RateLimitExceeded):
            channel.submit(_message(nonce=1, amount=1), T0)
        # Unconfigured route is unthrottled
        channel.submit(_message(nonce=2, amount=1000, dest="other"), T0)
        assert channel.pending_count() == 2

    def test_throttled_message_not_queued(self):
        channel = MessageChannel()
        channel.register("dest", RecordingReceiver([]))
        channel.configure_route("source", "dest", RateLimiterConfig(100, 1, True), T0)
        message = _message(amount=101)
        with pytest.raises(RateLimitExceeded):
            channel.submit(message, T0)
        assert channel.pending_count() == 0
        # Not marked as submitted either
        channel.configure_route("source", "dest", DISABLED_LIMITER, T0)
        channel.submit(message, T0)
        assert channel.pending_count() == 1

    def test_receiver_failure_requeues(self):
        channel = MessageChannel()
        receiver = RecordingReceiver([], fail=True)
        channel.register("dest", receiver)
        message = _message()
        channel.submit(message, T0)

        with pytest.raises(RuntimeError):
            channel.deliver_due(T0)
        assert channel.pending_count() == 1
        assert not channel.is_delivered(message.message_id)

        receiver.fail = False
        channel.deliver_due(T0)
        assert receiver.received == [message]
        assert channel.is_delivered(message.message_id)

    def test_missing_receiver_at_delivery(self):
        channel = MessageChannel()
        channel.register("dest", RecordingReceiver([]))
        channel.submit(_message(), T0)
        channel._receivers.clear()
        with pytest.raises(LedgerError):
            channel.deliver_due(T0)
        assert channel.pending_count() == 1
