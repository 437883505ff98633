"""
bridge.py - Cross-Ledger Value Moves

A bridge move is two transactions on two independent ledger instances:

    Outbound (source ledger):
        1. Settle sender
        2. Burn exactly amount from sender (fails like a withdrawal)
        3. Capture sender's locked-in rate at this instant into a BridgeMessage

    Inbound (destination ledger, when the message is delivered):
        1. Settle receiver if it exists
        2. Set receiver.rate := carried rate (NOT the destination's global rate)
        3. Credit amount

The two ledgers share no state. The rate travels inside the message because
each instance evolves its own global rate and they may have diverged by the
time the message arrives.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
import hashlib
from typing import TYPE_CHECKING, List, Optional, Set, Tuple

from .core import (
    LedgerView, PendingTransaction, TransactionOrigin, OriginType, ExecuteResult,
    MINT_AND_BURN_ROLE, EVENT_BRIDGE_BURN, EVENT_BRIDGE_MINT,
    LedgerError, require_uint,
)
from .accrual import compute_credit, compute_withdraw, resolve_amount, settled_account

if TYPE_CHECKING:
    from .ledger import Ledger
    from .transport import MessageChannel


# ============================================================================
# MESSAGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class BridgeMessage:
    """
    Immutable burn notification carried from the source to the destination ledger.

    Attributes:
        message_id: Content hash of the other fields (dedup key)
        source_ledger: Name of the ledger that burned
        dest_ledger: Name of the ledger that must mint
        sender: Account burned on the source ledger
        receiver: Account credited on the destination ledger
        amount: Principal moved (already resolved, never MAX_AMOUNT)
        rate: Sender's locked-in rate captured at burn time
        nonce: Source adapter's outbound counter
        sent_at: Source ledger time of the burn
    """
    message_id: str
    source_ledger: str
    dest_ledger: str
    sender: str
    receiver: str
    amount: int
    rate: int
    nonce: int
    sent_at: datetime

    @staticmethod
    def compute_id(
        source_ledger: str,
        dest_ledger: str,
        sender: str,
        receiver: str,
        amount: int,
        rate: int,
        nonce: int,
        sent_at: datetime,
    ) -> str:
        content = "|".join([
            source_ledger, dest_ledger, sender, receiver,
            str(amount), str(rate), str(nonce), sent_at.isoformat(),
        ])
        return "msg:" + hashlib.sha256(content.encode()).hexdigest()[:16]

    @classmethod
    def create(
        cls,
        source_ledger: str,
        dest_ledger: str,
        sender: str,
        receiver: str,
        amount: int,
        rate: int,
        nonce: int,
        sent_at: datetime,
    ) -> BridgeMessage:
        """Build a message with its id derived from the content."""
        message_id = cls.compute_id(
            source_ledger, dest_ledger, sender, receiver, amount, rate, nonce, sent_at,
        )
        return cls(
            message_id=message_id,
            source_ledger=source_ledger,
            dest_ledger=dest_ledger,
            sender=sender,
            receiver=receiver,
            amount=amount,
            rate=rate,
            nonce=nonce,
            sent_at=sent_at,
        )

    def __repr__(self) -> str:
        return (f"BridgeMessage({self.message_id}: {self.source_ledger}/{self.sender} → "
                f"{self.dest_ledger}/{self.receiver}, amount={self.amount}, rate={self.rate})")


# ============================================================================
# PURE HALVES
# ============================================================================

def compute_bridge_burn(
    view: LedgerView,
    sender: str,
    amount: int,
    origin: Optional[TransactionOrigin] = None,
) -> Tuple[PendingTransaction, int, int]:
    """
    Outbound half: settle and burn from sender, capturing its rate.

    Args:
        view: Read-only view of the source ledger
        sender: Account burned
        amount: Principal to burn, or MAX_AMOUNT for the settled balance
        origin: Optional origin (defaults to a BRIDGE origin for sender)

    Returns:
        (pending, resolved_amount, captured_rate)

    Raises:
        InsufficientBalance: If amount exceeds the sender's settled balance.
    """
    amount = resolve_amount(view, sender, amount)
    _, settled, _ = settled_account(view, sender)
    if origin is None:
        origin = TransactionOrigin(OriginType.BRIDGE, "bridge", sender, EVENT_BRIDGE_BURN)
    pending = compute_withdraw(view, sender, amount, origin)
    return pending, amount, settled.rate


def compute_bridge_mint(
    view: LedgerView,
    receiver: str,
    amount: int,
    carried_rate: int,
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Inbound half: settle receiver, apply the carried rate, credit amount.

    This is the only credit that does not use the receiving instance's own
    global rate.
    """
    require_uint(carried_rate, "carried_rate")
    if origin is None:
        origin = TransactionOrigin(OriginType.BRIDGE, "bridge", receiver, EVENT_BRIDGE_MINT)
    return compute_credit(view, receiver, amount, carried_rate, origin)


# ============================================================================
# ADAPTER
# ============================================================================

class BridgeAdapter:
    """
    Binds one ledger instance to a transport.

    The adapter acts on the ledger as `caller`, which must hold
    MINT_AND_BURN_ROLE there. With a channel, outbound messages are queued on
    it and inbound messages arrive through receive(); without one they are
    collected in `outbox` for manual delivery.

    Example:
        channel = MessageChannel()
        src = BridgeAdapter(source_ledger, channel)
        dst = BridgeAdapter(dest_ledger, channel)
        msg = src.send("alice", "bob", 1000, dest_ledger.name, delay=timedelta(minutes=20))
        channel.deliver_due(msg.sent_at + timedelta(minutes=20))
    """

    def __init__(
        self,
        ledger: 'Ledger',
        channel: Optional['MessageChannel'] = None,
        caller: str = "bridge_pool",
    ):
        self.ledger = ledger
        self.channel = channel
        self.caller = caller
        self.outbox: List[BridgeMessage] = []
        self._nonce = 0
        self._processed: Set[str] = set()
        if channel is not None:
            channel.register(ledger.name, self)

    @property
    def nonce(self) -> int:
        return self._nonce

    def send(
        self,
        sender: str,
        receiver: str,
        amount: int,
        dest_ledger: str,
        delay: timedelta = timedelta(0),
    ) -> BridgeMessage:
        """
        Burn amount from sender and emit a message for dest_ledger.

        The route budget is checked before the burn, so a throttled send
        leaves the source ledger unchanged.

        Raises:
            Unauthorized: If the adapter's caller lacks MINT_AND_BURN_ROLE.
            ValueError: If amount resolves to zero or an id is empty.
            InsufficientBalance: If sender cannot cover amount.
            RateLimitExceeded: If the route is over budget.
        """
        ledger = self.ledger
        ledger.require_role(MINT_AND_BURN_ROLE, self.caller)
        if not receiver or not receiver.strip():
            raise ValueError("receiver cannot be empty")
        if not dest_ledger or not dest_ledger.strip():
            raise ValueError("dest_ledger cannot be empty")

        origin = TransactionOrigin(OriginType.BRIDGE, self.caller, sender, EVENT_BRIDGE_BURN)
        pending, amount, rate = compute_bridge_burn(ledger, sender, amount, origin)
        if amount == 0:
            raise ValueError("bridge amount must be positive")

        message = BridgeMessage.create(
            source_ledger=ledger.name,
            dest_ledger=dest_ledger,
            sender=sender,
            receiver=receiver,
            amount=amount,
            rate=rate,
            nonce=self._nonce,
            sent_at=ledger.current_time,
        )
        if self.channel is not None:
            self.channel.check(message, ledger.current_time)

        # No message may leave without its burn behind it
        result = ledger.execute(pending)
        if result != ExecuteResult.APPLIED:
            raise LedgerError(
                f"Bridge burn for {sender} not applied by ledger {ledger.name}: {result.value}"
            )
        self._nonce += 1

        if self.channel is not None:
            self.channel.submit(message, ledger.current_time, delay)
        else:
            self.outbox.append(message)

        if ledger.verbose:
            print(f"🌉 Bridge out: {sender} burned {amount} at rate {rate} → "
                  f"{dest_ledger}/{receiver}")
        return message

    def receive(self, message: BridgeMessage) -> ExecuteResult:
        """
        Apply an inbound message on this adapter's ledger.

        Returns:
            ExecuteResult.APPLIED on first delivery,
            ExecuteResult.ALREADY_APPLIED for a message id seen before.

        Raises:
            ValueError: If the message is addressed to another ledger.
            Unauthorized: If the adapter's caller lacks MINT_AND_BURN_ROLE.
            LedgerError: If the ledger rejects the mint.
        """
        ledger = self.ledger
        if message.dest_ledger != ledger.name:
            raise ValueError(
                f"Message {message.message_id} is for {message.dest_ledger}, not {ledger.name}"
            )
        if message.message_id in self._processed:
            if ledger.verbose:
                print(f"⚠️  Duplicate bridge message {message.message_id} ignored")
            return ExecuteResult.ALREADY_APPLIED

        ledger.require_role(MINT_AND_BURN_ROLE, self.caller)
        origin = TransactionOrigin(
            OriginType.BRIDGE, message.message_id, message.receiver, EVENT_BRIDGE_MINT,
        )
        pending = compute_bridge_mint(ledger, message.receiver, message.amount, message.rate, origin)
        result = ledger.execute(pending)
        if result != ExecuteResult.APPLIED:
            raise LedgerError(
                f"Bridge mint {message.message_id} not applied by ledger {ledger.name}: "
                f"{result.value}"
            )

        self._processed.add(message.message_id)
        if ledger.verbose:
            print(f"🌉 Bridge in: {message.receiver} credited {message.amount} "
                  f"at carried rate {message.rate}")
        return result

    def is_processed(self, message_id: str) -> bool:
        return message_id in self._processed

    def __repr__(self) -> str:
        return (f"BridgeAdapter({self.ledger.name}, caller={self.caller}, "
                f"sent={self._nonce}, received={len(self._processed)})")
