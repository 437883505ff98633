"""
accrual.py - Linear Interest Accrual and Settlement

This module implements the accrual rules of the ledger using a pure function
architecture with explicit inputs.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take all inputs explicitly as parameters
   - No LedgerView, no hidden state
   - Example: calculate_balance(principal, rate, elapsed) -> int

2. VIEW FUNCTIONS (computed_balance, query):
   - Read one account from a LedgerView and project it to "now"
   - Never mutate anything

3. TRANSACTION BUILDERS (compute_*):
   - Take (view, account, ...) and return a PendingTransaction
   - Ledger.execute() applies the result atomically

Key Formulas:
    elapsed  = now - last_settled                      (whole seconds)
    factor   = SCALE + rate * elapsed                  (linear, not compounding)
    balance  = principal * factor // SCALE
    interest = balance - principal                     (minted on settlement)

All arithmetic is integer and range-checked; nothing here uses floats.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
from typing import Optional, Tuple

from .core import (
    LedgerView, PendingTransaction, AccountState, AccountChange,
    TransactionOrigin, OriginType,
    SCALE, MAX_AMOUNT, EMPTY_ACCOUNT,
    EVENT_SETTLE, EVENT_FUND, EVENT_WITHDRAW,
    InsufficientBalance,
    checked_add, checked_mul, mul_div, require_uint,
    build_transaction, empty_pending_transaction,
)
from .rate_authority import RateAuthority


# ============================================================================
# PURE CALCULATION FUNCTIONS - No LedgerView, All Inputs Explicit
# ============================================================================

def elapsed_seconds(last_settled: Optional[datetime], now: datetime) -> int:
    """
    Whole seconds between last settlement and now.

    Sub-second remainders are dropped; a slot that was never settled, or a
    clock that has not moved past last_settled, yields 0.
    """
    if last_settled is None or now <= last_settled:
        return 0
    delta = now - last_settled
    return delta.days * 86400 + delta.seconds


def calculate_interest_factor(rate: int, elapsed: int) -> int:
    """
    Linear growth factor since last settlement, scaled by SCALE.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Raises:
        ArithmeticOverflow: If rate * elapsed leaves the representable range.
    """
    return checked_add(SCALE, checked_mul(rate, elapsed))


def calculate_balance(principal: int, rate: int, elapsed: int) -> int:
    """
    Time-inclusive balance for a principal held at rate for elapsed seconds.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Monotonically non-decreasing in elapsed (rate and principal fixed) and
    equal to principal when elapsed == 0.

    Raises:
        ArithmeticOverflow: If principal * factor leaves the representable range.
    """
    if principal == 0:
        return 0
    factor = calculate_interest_factor(rate, elapsed)
    return mul_div(principal, factor, SCALE)


def calculate_settlement(state: AccountState, now: datetime) -> Tuple[AccountState, int]:
    """
    Convert accrued interest into principal and restart the accrual clock.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Args:
        state: Account state before settlement
        now: Settlement time

    Returns:
        (settled_state, interest) where settled_state.last_settled == now
        and interest is the principal minted. Settling twice at the same
        time mints nothing the second time.
    """
    elapsed = elapsed_seconds(state.last_settled, now)
    balance = calculate_balance(state.principal, state.rate, elapsed)
    interest = balance - state.principal
    last_settled = now if state.last_settled is None else max(state.last_settled, now)
    return replace(state, principal=balance, last_settled=last_settled), interest


# ============================================================================
# VIEW FUNCTIONS - Read-only projections
# ============================================================================

def load_account(view: LedgerView, account: str) -> Optional[AccountState]:
    """Stored state of account, or None if the slot was never created."""
    if not view.has_account(account):
        return None
    return view.get_account(account)


def settled_account(view: LedgerView, account: str) -> Tuple[Optional[AccountState], AccountState, int]:
    """
    Project an account through settlement at the view's current time.

    Returns:
        (old_state, settled_state, interest). old_state is None for an
        account that does not exist yet; its settled state is an empty slot
        stamped with the current time.
    """
    old = load_account(view, account)
    settled, interest = calculate_settlement(old or EMPTY_ACCOUNT, view.current_time)
    return old, settled, interest


def computed_balance(view: LedgerView, account: str) -> int:
    """
    Balance of account including interest accrued up to the view's current time.

    Zero for accounts that were never created.

    Raises:
        ArithmeticOverflow: If the projection leaves the representable range.
    """
    state = load_account(view, account)
    if state is None:
        return 0
    elapsed = elapsed_seconds(state.last_settled, view.current_time)
    return calculate_balance(state.principal, state.rate, elapsed)


def query(view: LedgerView, account: str) -> int:
    """Up-to-the-instant balance with no settlement side effect."""
    return computed_balance(view, account)


def resolve_amount(view: LedgerView, account: str, amount: int) -> int:
    """Resolve the MAX_AMOUNT sentinel to the account's settled balance."""
    require_uint(amount, "amount")
    if amount == MAX_AMOUNT:
        return computed_balance(view, account)
    return amount


# ============================================================================
# TRANSACTION BUILDERS
# ============================================================================

def _origin(origin: Optional[TransactionOrigin], account: str, event_type: str) -> TransactionOrigin:
    if origin is not None:
        return origin
    return TransactionOrigin(
        origin_type=OriginType.SYSTEM,
        source_id="ledger",
        account=account,
        event_type=event_type,
    )


def compute_settle(
    view: LedgerView,
    account: str,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Settle accrued interest of one account.

    Returns an empty PendingTransaction when the account does not exist or
    was already settled at the current time.
    """
    old = load_account(view, account)
    if old is None:
        return empty_pending_transaction(view)

    settled, interest = calculate_settlement(old, view.current_time)
    if settled == old:
        return empty_pending_transaction(view)

    change = AccountChange(account=account, old_state=old, new_state=settled, interest=interest)
    return build_transaction(view, [change], _origin(origin, account, EVENT_SETTLE))


def compute_credit(
    view: LedgerView,
    account: str,
    amount: int,
    rate: int,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Settle account, assign rate, then add amount to its principal.

    This is the shared body of funding (rate taken from the authority) and
    the inbound bridge half (rate carried in the message).

    Raises:
        ValueError: If amount or rate is not a valid unsigned integer.
        ArithmeticOverflow: If the new principal leaves the representable range.
    """
    require_uint(amount, "amount")
    require_uint(rate, "rate")
    old, settled, interest = settled_account(view, account)

    new_state = replace(
        settled,
        rate=rate,
        principal=checked_add(settled.principal, amount),
    )
    change = AccountChange(account=account, old_state=old, new_state=new_state, interest=interest)
    return build_transaction(view, [change], _origin(origin, account, EVENT_FUND))


def compute_fund(
    view: LedgerView,
    authority: RateAuthority,
    account: str,
    amount: int,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Fund an account at the authority's current rate.

    The account's rate is overwritten on every funding, including top-ups of
    an account that already locked in a higher rate.

    Example:
        pending = compute_fund(ledger, authority, "alice", 1000)
        ledger.execute(pending)
    """
    return compute_credit(view, account, amount, authority.current_rate(), origin)


def compute_withdraw(
    view: LedgerView,
    account: str,
    amount: int,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Settle account, then remove amount from its principal.

    MAX_AMOUNT withdraws the whole settled balance. The locked-in rate is
    left unchanged.

    Raises:
        InsufficientBalance: If amount exceeds the settled balance.
    """
    require_uint(amount, "amount")
    old, settled, interest = settled_account(view, account)
    if amount == MAX_AMOUNT:
        amount = settled.principal

    if old is None:
        if amount == 0:
            return empty_pending_transaction(view)
        raise InsufficientBalance(f"{account}: balance 0 < {amount}")
    if amount > settled.principal:
        raise InsufficientBalance(f"{account}: balance {settled.principal} < {amount}")

    new_state = replace(settled, principal=settled.principal - amount)
    change = AccountChange(account=account, old_state=old, new_state=new_state, interest=interest)
    return build_transaction(view, [change], _origin(origin, account, EVENT_WITHDRAW))
