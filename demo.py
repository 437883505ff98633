#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Rebase Ledger Step by Step

This is a pedagogical demonstration of how the interest-accruing ledger works.
Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Accrual         - Funding, linear interest, settlement
  4-5:  Rates           - The decrease-only global rate, rate inheritance
  6-7:  Safety          - Rejections, idempotency, supply reconciliation
  8-9:  Bridging        - Carrying a locked-in rate to another ledger
  10:   Vault           - Redeeming through an external asset boundary

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import sys

from rebase_ledger import (
    Ledger, RateAuthority, BridgeAdapter, MessageChannel, RateLimiterConfig, Vault,
    InsufficientBalance, RateMustDecrease, RateLimitExceeded,
    ExternalTransferFailed, MAX_AMOUNT, SCALE,
    compute_withdraw,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    owner: str = "admin"

    # 5e-8 per second, roughly 158% a year of simple interest
    initial_rate: int = 5 * 10**10
    reduced_rate: int = 4 * 10**10

    # Amounts use 18 decimals, so 10**18 is one whole token
    alice_deposit: int = 1000 * 10**18
    bridge_amount: int = 250 * 10**18
    bridge_delay: timedelta = timedelta(minutes=20)


CONFIG = DemoConfig()

# Global state for interactive mode
QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def tokens(amount: int) -> str:
    """Render an 18-decimal amount for humans (display only)."""
    whole, frac = divmod(amount, 10**18)
    return f"{whole}.{frac:018d}"


# ============================================================================
# PHASE 1: ACCRUAL (Steps 1-3)
# ============================================================================

def step_01_fund(authority: RateAuthority) -> Ledger:
    step_header(1, "Funding an Account",
        "Funding locks in the current global rate on the account.")

    print(">>> ledger = Ledger('source', authority)")
    ledger = Ledger("source", authority, initial_time=CONFIG.start_time, verbose=True)

    print(">>> ledger.fund('alice', 1000 tokens)")
    ledger.fund("alice", CONFIG.alice_deposit)

    section_header("Account State")
    account = ledger.get_account("alice")
    print(f"principal:    {tokens(account.principal)}")
    print(f"rate:         {account.rate} (per second, scaled by {SCALE})")
    print(f"last settled: {account.last_settled}")
    return ledger


def step_02_accrue(ledger: Ledger):
    step_header(2, "Linear Interest",
        "query() projects the balance to now; stored principal does not move.")

    for hours in (1, 24):
        ledger.advance_time(CONFIG.start_time + timedelta(hours=hours))
        print(f"after {hours:>2}h: query = {tokens(ledger.query('alice'))}, "
              f"principal = {tokens(ledger.principal_of('alice'))}")

    section_header("Key Insight")
    print("""
    balance = principal * (SCALE + rate * elapsed) / SCALE

    Interest is simple, not compounding, until something settles the account.
    """)


def step_03_settle(ledger: Ledger):
    step_header(3, "Settlement",
        "settle() turns accrued interest into principal and restarts the clock.")

    ledger.settle("alice")
    print(f"principal after settle: {tokens(ledger.principal_of('alice'))}")

    log_size = len(ledger.transaction_log)
    ledger.settle("alice")
    print(f"settling again at the same instant adds "
          f"{len(ledger.transaction_log) - log_size} transactions")


# ============================================================================
# PHASE 2: RATES (Steps 4-5)
# ============================================================================

def step_04_rate_cut(authority: RateAuthority):
    step_header(4, "The Global Rate Only Goes Down",
        "Later depositors always lock in an equal or lower rate.")

    authority.verbose = True
    authority.set_rate(CONFIG.owner, CONFIG.reduced_rate)

    try:
        authority.set_rate(CONFIG.owner, CONFIG.initial_rate)
    except RateMustDecrease as e:
        print(f"✗ {e}")


def step_05_inheritance(ledger: Ledger):
    step_header(5, "Rate Inheritance",
        "A fresh recipient takes the sender's rate, not the current global rate.")

    ledger.transfer("alice", "bob", 100 * 10**18)
    print(f"global rate: {ledger.global_rate}")
    print(f"alice rate:  {ledger.rate_of('alice')}")
    print(f"bob rate:    {ledger.rate_of('bob')}  (inherited)")


# ============================================================================
# PHASE 3: SAFETY (Steps 6-7)
# ============================================================================

def step_06_rejections(ledger: Ledger):
    step_header(6, "Rejections and Idempotency",
        "Failed operations change nothing; duplicates apply once.")

    before = dict(ledger.accounts)
    try:
        ledger.withdraw("bob", 10**30)
    except InsufficientBalance as e:
        print(f"✗ {e}")
    print(f"state unchanged: {dict(ledger.accounts) == before}")

    pending = compute_withdraw(ledger, "bob", 10**18)
    print(f"first execute:  {ledger.execute(pending).value}")
    print(f"second execute: {ledger.execute(pending).value}")


def step_07_reconcile(ledger: Ledger):
    step_header(7, "Supply Reconciliation",
        "Every unit of principal is explained by the transaction log.")

    result = ledger.verify_supply()
    print(f"valid:           {result['valid']}")
    print(f"total principal: {tokens(result['total_principal'])}")
    print(f"interest minted: {tokens(result['interest_minted'])}")
    for event, delta in sorted(result['by_event'].items()):
        print(f"  {event:<12} {delta:+}")


# ============================================================================
# PHASE 4: BRIDGING (Steps 8-9)
# ============================================================================

def step_08_bridge(source: Ledger) -> tuple:
    step_header(8, "Bridging With a Carried Rate",
        "The burn captures the sender's rate; the remote mint applies it.")

    dest_authority = RateAuthority(CONFIG.owner, initial_rate=10**10)
    dest = Ledger("dest", dest_authority, initial_time=source.current_time, verbose=True)
    for ledger in (source, dest):
        ledger.grant_mint_and_burn_role(CONFIG.owner, "bridge_pool")

    channel = MessageChannel(verbose=True)
    source_adapter = BridgeAdapter(source, channel)
    BridgeAdapter(dest, channel)

    message = source_adapter.send("alice", "carol", CONFIG.bridge_amount, "dest",
                                  delay=CONFIG.bridge_delay)

    dest.advance_time(dest.current_time + CONFIG.bridge_delay)
    for delivered, result in channel.deliver_due(dest.current_time):
        print(f"{delivered.message_id}: {result.value}")

    section_header("Result")
    print(f"carried rate:     {message.rate}")
    print(f"dest global rate: {dest.global_rate}")
    print(f"carol rate:       {dest.rate_of('carol')}")
    return dest, channel, source_adapter


def step_09_throttle(source: Ledger, channel: MessageChannel, adapter: BridgeAdapter):
    step_header(9, "Route Budgets",
        "A throttled bridge is refused before anything is burned.")

    channel.configure_route("source", "dest",
                            RateLimiterConfig(10 * 10**18, 10**17, True), source.current_time)
    before = source.principal_of("alice")
    try:
        adapter.send("alice", "carol", 50 * 10**18, "dest")
    except RateLimitExceeded as e:
        print(f"✗ {e}")
    print(f"alice principal unchanged: {source.principal_of('alice') == before}")


# ============================================================================
# PHASE 5: VAULT (Step 10)
# ============================================================================

def step_10_vault(dest: Ledger):
    step_header(10, "Vault Redemption",
        "A failed payout aborts the redemption, including its settlement.")

    dest.grant_mint_and_burn_role(CONFIG.owner, "vault")

    def offline(user, amount):
        raise ConnectionError("custodian offline")

    vault = Vault(dest, "vault", payout=offline)
    vault.add_rewards(CONFIG.bridge_amount * 2)
    dest.advance_time(dest.current_time + timedelta(days=1))
    try:
        vault.redeem("carol", MAX_AMOUNT)
    except ExternalTransferFailed as e:
        print(f"✗ {e}")

    vault.payout = lambda user, amount: print(f"💸 paid {tokens(amount)} to {user}")
    vault.redeem("carol", MAX_AMOUNT)


def main():
    print("=" * 70)
    print("       REBASE LEDGER TUTORIAL")
    print("=" * 70)

    authority = RateAuthority(CONFIG.owner, initial_rate=CONFIG.initial_rate)

    ledger = step_01_fund(authority)
    wait_for_enter()
    step_02_accrue(ledger)
    wait_for_enter()
    step_03_settle(ledger)
    wait_for_enter()

    step_04_rate_cut(authority)
    wait_for_enter()
    step_05_inheritance(ledger)
    wait_for_enter()

    step_06_rejections(ledger)
    wait_for_enter()
    step_07_reconcile(ledger)
    wait_for_enter()

    dest, channel, adapter = step_08_bridge(ledger)
    wait_for_enter()
    step_09_throttle(ledger, channel, adapter)
    wait_for_enter()

    step_10_vault(dest)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    You've learned:

    ACCRUAL
      - Funding locks in the global rate
      - query() is a pure projection, settle() mutates

    RATES
      - The global rate only decreases
      - Fresh recipients inherit the sender's rate

    BRIDGING
      - The burn carries the rate, the remote mint applies it
      - Route budgets refuse moves before anything is burned

    Next steps:
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
