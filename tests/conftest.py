"""
conftest.py - Shared pytest fixtures for rebase ledger tests

Provides common fixtures used across unit, conformance and functional tests:
- Rate authorities and ledgers (empty, funded)
- Two-ledger bridge setups wired through a MessageChannel
- Vaults with the mint/burn role granted
- A FakeView for pure-function tests
"""

import pytest
from datetime import timedelta

from rebase_ledger import (
    Ledger, RateAuthority, AccountState,
    BridgeAdapter, MessageChannel, Vault,
)

from tests.fake_view import FakeView, T0, RATE, OWNER


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def authority():
    """Rate authority owned by OWNER starting at RATE."""
    return RateAuthority(OWNER, initial_rate=RATE)


@pytest.fixture
def empty_ledger(authority):
    """Fresh ledger with no accounts."""
    return Ledger("test", authority, T0, verbose=False, test_mode=True)


@pytest.fixture
def funded_ledger(empty_ledger):
    """Ledger where alice funded 1000 at RATE."""
    empty_ledger.fund("alice", 1000)
    return empty_ledger


@pytest.fixture
def seeded_ledger(empty_ledger):
    """Ledger seeded directly with alice (1e18 at RATE) and bob (5e17 at RATE/2)."""
    empty_ledger.set_account("alice", AccountState(10**18, RATE, T0))
    empty_ledger.set_account("bob", AccountState(5 * 10**17, RATE // 2, T0))
    return empty_ledger


# =============================================================================
# BRIDGE FIXTURES
# =============================================================================

@pytest.fixture
def bridge_setup():
    """
    Two ledgers with independent authorities, wired through one channel.

    Returns a dict with source/dest ledgers, authorities, adapters and channel.
    """
    source_authority = RateAuthority(OWNER, initial_rate=RATE)
    dest_authority = RateAuthority(OWNER, initial_rate=RATE)
    source = Ledger("source", source_authority, T0, verbose=False, test_mode=True)
    dest = Ledger("dest", dest_authority, T0, verbose=False, test_mode=True)
    source.grant_mint_and_burn_role(OWNER, "bridge_pool")
    dest.grant_mint_and_burn_role(OWNER, "bridge_pool")

    channel = MessageChannel()
    return {
        "source": source,
        "dest": dest,
        "source_authority": source_authority,
        "dest_authority": dest_authority,
        "channel": channel,
        "source_adapter": BridgeAdapter(source, channel),
        "dest_adapter": BridgeAdapter(dest, channel),
    }


# =============================================================================
# VAULT FIXTURES
# =============================================================================

@pytest.fixture
def vault(empty_ledger):
    """Vault holding the mint/burn role on empty_ledger, recording payouts."""
    empty_ledger.grant_mint_and_burn_role(OWNER, "vault")
    payouts = []
    v = Vault(empty_ledger, caller="vault", payout=lambda user, amount: payouts.append((user, amount)))
    v.payouts = payouts
    return v


# =============================================================================
# FAKE VIEW FIXTURES
# =============================================================================

@pytest.fixture
def simple_view():
    """FakeView with one settled and one stale account."""
    return FakeView(
        accounts={
            "alice": AccountState(1000, RATE, T0),
            "bob": AccountState(500, RATE // 2, T0 - timedelta(hours=1)),
        },
        time=T0,
    )
