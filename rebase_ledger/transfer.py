"""
transfer.py - In-Ledger Transfers

Moves principal between two accounts of the same ledger instance:

    1. Settle sender and recipient (independent accounts, order irrelevant)
    2. Resolve MAX_AMOUNT to the sender's settled balance
    3. A recipient whose settled principal is exactly zero inherits the
       sender's locked-in rate (value keeps its early rate as it moves)
    4. Move amount from sender to recipient

The move itself is net zero; only step 1 can add principal (settled interest).
"""

from __future__ import annotations
from dataclasses import replace
from typing import Optional

from .core import (
    LedgerView, PendingTransaction, AccountChange,
    TransactionOrigin, OriginType,
    MAX_AMOUNT, EVENT_TRANSFER,
    InsufficientBalance,
    checked_add, require_uint,
    build_transaction,
)
from .accrual import settled_account


def compute_transfer(
    view: LedgerView,
    sender: str,
    recipient: str,
    amount: int,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Build a transfer of amount from sender to recipient.

    Args:
        view: Read-only ledger access
        sender: Account debited
        recipient: Account credited (created if it does not exist)
        amount: Principal to move, or MAX_AMOUNT for the whole settled balance
        origin: Optional origin (defaults to a USER_ACTION by the sender)

    Returns:
        PendingTransaction with one change for each account.

    Raises:
        ValueError: If sender == recipient or an id is empty.
        InsufficientBalance: If the sender's settled principal is below amount.

    Example:
        pending = compute_transfer(ledger, "alice", "bob", 250)
        ledger.execute(pending)
    """
    if not sender or not sender.strip():
        raise ValueError("sender cannot be empty")
    if not recipient or not recipient.strip():
        raise ValueError("recipient cannot be empty")
    if sender == recipient:
        raise ValueError("sender and recipient must be different")
    require_uint(amount, "amount")

    sender_old, sender_settled, sender_interest = settled_account(view, sender)
    recipient_old, recipient_settled, recipient_interest = settled_account(view, recipient)

    if amount == MAX_AMOUNT:
        amount = sender_settled.principal

    if amount > sender_settled.principal:
        raise InsufficientBalance(
            f"{sender}: balance {sender_settled.principal} < {amount}"
        )

    # Fresh or fully drained recipients take over the sender's rate
    recipient_rate = recipient_settled.rate
    if recipient_settled.principal == 0:
        recipient_rate = sender_settled.rate

    changes = [
        AccountChange(
            account=sender,
            old_state=sender_old,
            new_state=replace(sender_settled, principal=sender_settled.principal - amount),
            interest=sender_interest,
        ),
        AccountChange(
            account=recipient,
            old_state=recipient_old,
            new_state=replace(
                recipient_settled,
                rate=recipient_rate,
                principal=checked_add(recipient_settled.principal, amount),
            ),
            interest=recipient_interest,
        ),
    ]

    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.USER_ACTION,
            source_id=sender,
            account=recipient,
            event_type=EVENT_TRANSFER,
        )
    return build_transaction(view, changes, origin)
