"""
Core types and pure functions for the rebase ledger.

This module provides the foundational data structures and protocols for the ledger:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: AccountState, AccountChange, PendingTransaction, Transaction
3. Exceptions: LedgerError and domain-specific error types
4. Checked integer arithmetic over the unsigned 256-bit range
5. Transaction builders and content-addressable intent ids

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import hashlib
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed-point scale for rates and interest factors (1.0 == SCALE).
SCALE = 10 ** 18

# Largest representable amount or rate. Arithmetic that would leave
# [0, MAX_UINT] raises ArithmeticOverflow instead of wrapping.
MAX_UINT = 2 ** 256 - 1

# Sentinel amount meaning "everything the account holds after settlement".
MAX_AMOUNT = MAX_UINT

# Per-second global rate a fresh authority starts with (5e-8 per second).
DEFAULT_INITIAL_RATE = 5 * 10 ** 10

# Capability required to mint or burn principal on behalf of an account.
MINT_AND_BURN_ROLE = "MINT_AND_BURN"

# Event types recorded on transaction origins.
EVENT_SETTLE = "SETTLE"
EVENT_FUND = "FUND"
EVENT_WITHDRAW = "WITHDRAW"
EVENT_TRANSFER = "TRANSFER"
EVENT_BRIDGE_BURN = "BRIDGE_BURN"
EVENT_BRIDGE_MINT = "BRIDGE_MINT"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class ArithmeticOverflow(LedgerError):
    """Raised when an amount or interest computation leaves the representable range."""
    pass


class InsufficientBalance(LedgerError):
    """Raised when a withdrawal, transfer or burn exceeds the settled principal."""
    pass


class RateMustDecrease(LedgerError):
    """Raised when a rate change does not strictly lower the global rate."""
    pass


class Unauthorized(LedgerError):
    """Raised when the caller lacks the capability for a privileged operation."""
    pass


class RateLimitExceeded(LedgerError):
    """Raised when a bridge route's flow-control budget cannot cover an amount."""

    def __init__(self, message: str, wait_seconds: int = 0):
        super().__init__(message)
        self.wait_seconds = wait_seconds


class ExternalTransferFailed(LedgerError):
    """Raised when the external asset leg of a deposit or redemption fails."""
    pass


# ============================================================================
# CHECKED ARITHMETIC
# ============================================================================

def require_uint(value: Any, name: str = "value") -> int:
    """
    Validate that value is an int within [0, MAX_UINT].

    Raises:
        ValueError: If value is not an int (bools are rejected) or out of range.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")
    if value > MAX_UINT:
        raise ValueError(f"{name} exceeds MAX_UINT")
    return value


def checked_add(a: int, b: int) -> int:
    result = a + b
    if result > MAX_UINT:
        raise ArithmeticOverflow(f"addition overflow: {a} + {b}")
    return result


def checked_sub(a: int, b: int) -> int:
    if b > a:
        raise ArithmeticOverflow(f"subtraction underflow: {a} - {b}")
    return a - b


def checked_mul(a: int, b: int) -> int:
    result = a * b
    if result > MAX_UINT:
        raise ArithmeticOverflow(f"multiplication overflow: {a} * {b}")
    return result


def mul_div(a: int, b: int, denominator: int) -> int:
    """
    Compute floor(a * b / denominator) with the product range-checked.

    The intermediate product must fit in MAX_UINT, matching how the value
    would be computed on a 256-bit machine word.
    """
    if denominator == 0:
        raise ArithmeticOverflow("division by zero")
    return checked_mul(a, b) // denominator


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Pure functions (accrual rules, transfers, bridge halves) accept a
    LedgerView to declare that they only read. The Ledger class implements
    this protocol; tests use FakeView.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_account(self, account_id: str) -> 'AccountState':
        """Return the stored state of an account (EMPTY_ACCOUNT if never created)."""
        ...

    def has_account(self, account_id: str) -> bool:
        """Return True if the account slot has been created."""
        ...

    def list_accounts(self) -> Set[str]:
        """Return the set of all created account ids."""
        ...

    @property
    def next_sequence(self) -> int:
        """Return the sequence number the next executed transaction will get."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction intent was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation (stale account state or future timestamp).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """
    Classification of where a transaction originated.

    Used for audit trails and supply reconciliation.
    """
    USER_ACTION = "user_action"           # Account holder initiated (transfer, settle)
    VAULT = "vault"                       # Deposit/redeem boundary
    BRIDGE = "bridge"                     # Cross-instance burn or mint
    ADMIN = "admin"                       # Privileged mint/burn by a role holder
    SYSTEM = "system"                     # Direct funding and housekeeping


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (vault name, message id, user id)
        account: Account the operation was requested for (if applicable)
        event_type: Specific operation (e.g., "FUND", "TRANSFER", "BRIDGE_MINT")
    """
    origin_type: OriginType
    source_id: str
    account: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.account:
            parts.append(f"account={self.account}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# ACCOUNT STATE
# ============================================================================

@dataclass(frozen=True, slots=True)
class AccountState:
    """
    Stored state of one ledger account.

    Attributes:
        principal: Explicitly recorded balance, excluding unsettled interest.
        rate: Locked-in per-second rate, scaled by SCALE.
        last_settled: When interest was last converted into principal
                      (None for a slot that has never been touched).

    Time alone never changes these fields; only settlement, funding,
    withdrawal, transfer and bridge operations replace the state.
    """
    principal: int = 0
    rate: int = 0
    last_settled: Optional[datetime] = None

    def __post_init__(self):
        require_uint(self.principal, "principal")
        require_uint(self.rate, "rate")

    def __repr__(self) -> str:
        ts = self.last_settled.isoformat() if self.last_settled else "never"
        return f"AccountState(principal={self.principal}, rate={self.rate}, settled={ts})"


EMPTY_ACCOUNT = AccountState()


@dataclass(frozen=True, slots=True)
class AccountChange:
    """
    Record of one account's state transition inside a transaction.

    Stores complete before/after snapshots so the change can be replayed
    forward (new_state) or unwound (old_state).

    Attributes:
        account: Account id whose state changed
        old_state: State before the change (None if the account did not exist)
        new_state: State after the change
        interest: Interest minted into principal by settlement within this change
    """
    account: str
    old_state: Optional[AccountState]
    new_state: AccountState
    interest: int = 0

    def __post_init__(self):
        if not self.account or not self.account.strip():
            raise ValueError("AccountChange account cannot be empty")
        require_uint(self.interest, "interest")

    @property
    def principal_delta(self) -> int:
        """Signed change in principal, interest included."""
        before = self.old_state.principal if self.old_state is not None else 0
        return self.new_state.principal - before

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """
        Compute fields that differ between old and new state.

        Returns:
            Dict mapping field name to (old_value, new_value) tuples.
        """
        old = self.old_state or EMPTY_ACCOUNT
        changes = {}
        for name in ("principal", "rate", "last_settled"):
            old_val = getattr(old, name)
            new_val = getattr(self.new_state, name)
            if old_val != new_val:
                changes[name] = (old_val, new_val)
        return changes


# ============================================================================
# INTENT IDS
# ============================================================================

def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Deterministic regardless of dict insertion order or nesting depth.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"I:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, AccountState):
        return (f"A:{{{_canonicalize(value.principal)},{_canonicalize(value.rate)},"
                f"{_canonicalize(value.last_settled)}}}")
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    changes: Tuple[AccountChange, ...],
    origin: TransactionOrigin,
    sequence: int = 0,
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    The hash covers the ledger sequence the intent was computed against,
    the origin and every account transition (old and new snapshots).
    Re-submitting one pending transaction is detected. An operation that
    brings an account back to an earlier state is a new intent, because
    the sequence has moved on since.
    """
    content_parts = [f"seq:{sequence}", f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.account:
        content_parts.append(f"account:{origin.account}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for change in sorted(changes, key=lambda c: c.account):
        content_parts.append(
            f"change:{change.account}|{_canonicalize(change.old_state)}|"
            f"{_canonicalize(change.new_state)}|{change.interest}"
        )

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


# ============================================================================
# TRANSACTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction description before execution - represents INTENT.

    Created by the pure compute_* functions and submitted to Ledger.execute().

    Attributes:
        changes: Tuple of account transitions (at most one per account)
        origin: Who/what created this transaction and why
        timestamp: Ledger time the transaction was computed at
        sequence: Ledger's next_sequence when the transaction was computed
        intent_id: Content-addressable hash of the intent (auto-computed)
    """
    changes: Tuple[AccountChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    sequence: int = 0
    intent_id: str = field(default="")

    def __post_init__(self):
        accounts = [c.account for c in self.changes]
        if len(accounts) != len(set(accounts)):
            raise ValueError("PendingTransaction has more than one change per account")
        if self.sequence < 0:
            raise ValueError(f"sequence must be non-negative, got {self.sequence}")
        if not self.intent_id:
            object.__setattr__(
                self, 'intent_id',
                _compute_intent_id(self.changes, self.origin, self.sequence),
            )

    def is_empty(self) -> bool:
        """Return True if this pending transaction changes no account."""
        return not self.changes

    def change_for(self, account: str) -> Optional[AccountChange]:
        """Return the change touching account, if any."""
        for change in self.changes:
            if change.account == account:
                return change
        return None

    def interest_minted(self) -> int:
        """Total interest settled into principal by this transaction."""
        return sum(c.interest for c in self.changes)

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.changes)} changes, {self.origin})"


def build_transaction(
    view: LedgerView,
    changes: List[AccountChange],
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from account changes.

    Args:
        view: Read-only ledger view (provides current_time and next_sequence)
        changes: Account transitions to include
        origin: Transaction origin (defaults to a USER_ACTION origin)

    Returns:
        A PendingTransaction ready for execution
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.USER_ACTION,
            source_id="user",
        )
    return PendingTransaction(
        changes=tuple(changes),
        origin=origin,
        timestamp=view.current_time,
        sequence=view.next_sequence,
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """
    Create an empty PendingTransaction (no account changes).

    Use this when an operation has nothing to record.
    """
    return PendingTransaction(
        changes=(),
        origin=TransactionOrigin(OriginType.SYSTEM, "noop"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        changes: Tuple of account transitions
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was computed
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger (for ordering)
    """
    changes: Tuple[AccountChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int

    def __post_init__(self):
        if not self.changes:
            raise ValueError("Transaction must have at least one account change")

    def interest_minted(self) -> int:
        """Total interest settled into principal by this transaction."""
        return sum(c.interest for c in self.changes)

    def principal_delta(self) -> int:
        """Net change in total principal, interest included."""
        return sum(c.principal_delta for c in self.changes)

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            """Pad or truncate text to exactly w characters."""
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   ledger_name    : ' + self.ledger_name)}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
            f"│{pad('   interest       : ' + str(self.interest_minted()))}│",
            f"├{bar}┤",
            f"│{pad(' Account Changes (' + str(len(self.changes)) + '):')}│",
        ]
        for change in self.changes:
            lines.append(f"│{pad('   [' + change.account + ']')}│")
            for field_name, (old_val, new_val) in change.changed_fields().items():
                lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)
