"""
ledger.py - Stateful Accrual Ledger

The Ledger class is the central state manager for one ledger instance (one
chain or domain). It is the only module that mutates account state, ensuring
controlled and auditable changes.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access by pure functions
    - Executes pending transactions atomically (all account changes or none)
    - Holds accounts, mint/burn capabilities and the logical clock
    - Provides temporal operations (clone_at, replay) over the audit log
    - Always validates and always logs - no exceptions
"""

from __future__ import annotations
from datetime import datetime
from typing import Dict, List, Set, Optional, Tuple, Any

from .core import (
    # Types
    AccountState, AccountChange, Transaction, PendingTransaction,
    TransactionOrigin, OriginType, ExecuteResult,
    # Constants
    EMPTY_ACCOUNT, MINT_AND_BURN_ROLE, EVENT_FUND, EVENT_WITHDRAW,
    # Exceptions
    LedgerError, Unauthorized,
    # Helpers
    require_uint,
)
from .rate_authority import RateAuthority
from .accrual import (
    computed_balance,
    compute_settle, compute_fund, compute_withdraw,
)
from .transfer import compute_transfer


class Ledger:
    """
    Accrual ledger with full validation and audit trail.

    Implements the LedgerView protocol, allowing the ledger to be passed to
    pure functions that access only read-only methods.

    Design Principles:
        - Always validates: every pending transaction is checked against the
          current account states (optimistic concurrency) and the clock.
        - Always logs: every applied transaction is recorded, enabling
          clone_at() and replay().

    Thread Safety:
        Not thread-safe. Each ledger instance is a single-threaded actor; two
        instances only communicate through bridge messages.

    Example:
        authority = RateAuthority("admin", initial_rate=5 * 10**10)
        ledger = Ledger("source", authority)
        ledger.fund("alice", 1000)
        ledger.advance_time(ledger.current_time + timedelta(hours=1))
        ledger.transfer("alice", "bob", 500)
    """

    def __init__(
        self,
        name: str,
        authority: RateAuthority,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier (also the bridge routing name)
            authority: Rate authority this instance copies funding rates from
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Enable debug output (default: True)
            test_mode: Enable test mode to allow set_account() calls (default: False)
        """
        if not name or not name.strip():
            raise ValueError("Ledger name cannot be empty")
        self.name = name
        self.authority = authority
        self.accounts: Dict[str, AccountState] = {}
        self.seen_intent_ids: Set[str] = set()  # For idempotency (content-based)
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        # Monotonic sequence counter for execution ordering
        self._next_sequence: int = 0
        # Capability grants: role -> accounts holding it
        self._roles: Dict[str, Set[str]] = {MINT_AND_BURN_ROLE: set()}
        # Principal placed directly via set_account() (outside the log)
        self._seeded_principal: int = 0

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_account(self, account_id: str) -> AccountState:
        """
        Stored state of an account.

        Returns EMPTY_ACCOUNT for ids that were never created.
        """
        return self.accounts.get(account_id, EMPTY_ACCOUNT)

    def has_account(self, account_id: str) -> bool:
        return account_id in self.accounts

    def list_accounts(self) -> Set[str]:
        """List all created account ids."""
        return set(self.accounts.keys())

    @property
    def next_sequence(self) -> int:
        """Sequence number the next applied transaction will receive."""
        return self._next_sequence

    # ========================================================================
    # QUERIES
    # ========================================================================

    def is_applied(self, intent_id: str) -> bool:
        """Return True if a transaction with this intent_id was executed."""
        return intent_id in self.seen_intent_ids

    def query(self, account_id: str) -> int:
        """Balance including interest accrued up to now. Never settles."""
        return computed_balance(self, account_id)

    def principal_of(self, account_id: str) -> int:
        return self.get_account(account_id).principal

    def rate_of(self, account_id: str) -> int:
        return self.get_account(account_id).rate

    @property
    def global_rate(self) -> int:
        return self.authority.current_rate()

    def total_principal(self) -> int:
        """
        Sum of stored principal across all accounts.

        Accounts are sorted before summation for a deterministic order.
        """
        return sum(self.accounts[a].principal for a in sorted(self.accounts))

    def total_supply(self) -> int:
        """Sum of time-inclusive balances across all accounts."""
        return sum(computed_balance(self, a) for a in sorted(self.accounts))

    def interest_minted(self) -> int:
        """Interest settled into principal over the whole transaction log."""
        return sum(tx.interest_minted() for tx in self.transaction_log)

    def verify_supply(self) -> Dict[str, Any]:
        """
        Verify that stored principal is fully explained by the audit log.

        Principal may only enter through logged transactions (funding,
        settlement, bridge mints) or test seeding, and only leave through
        logged withdrawals and burns. The sum of all logged principal deltas
        plus seeded principal must therefore equal total_principal().

        Returns:
            Dict with keys:
            - 'valid': bool - True if the books reconcile
            - 'total_principal': int - current stored principal
            - 'expected': int - seeded principal plus logged deltas
            - 'interest_minted': int - interest settled over the log
            - 'by_event': Dict[str, int] - net principal delta per event type
            - 'discrepancy': int - total_principal - expected

        Example:
            result = ledger.verify_supply()
            assert result['valid'], f"Supply mismatch: {result['discrepancy']}"
        """
        by_event: Dict[str, int] = {}
        expected = self._seeded_principal
        for tx in self.transaction_log:
            delta = tx.principal_delta()
            expected += delta
            event = tx.origin.event_type or tx.origin.origin_type.value
            by_event[event] = by_event.get(event, 0) + delta

        actual = self.total_principal()
        return {
            'valid': actual == expected,
            'total_principal': actual,
            'expected': expected,
            'interest_minted': self.interest_minted(),
            'by_event': by_event,
            'discrepancy': actual - expected,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock to a new time.

        Time can only move forward, never backward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # CAPABILITIES
    # ========================================================================

    def grant_mint_and_burn_role(self, caller: str, account: str) -> None:
        """
        Grant the mint/burn capability to account.

        Raises:
            Unauthorized: If caller is not the rate authority's owner.
        """
        self.authority.require_owner(caller)
        if not account or not account.strip():
            raise ValueError("account cannot be empty")
        self._roles[MINT_AND_BURN_ROLE].add(account)
        if self.verbose:
            print(f"🔑 Granted {MINT_AND_BURN_ROLE} to {account}")

    def revoke_mint_and_burn_role(self, caller: str, account: str) -> None:
        self.authority.require_owner(caller)
        self._roles[MINT_AND_BURN_ROLE].discard(account)

    def has_role(self, role: str, account: str) -> bool:
        return account in self._roles.get(role, set())

    def require_role(self, role: str, caller: str) -> None:
        """
        Raises:
            Unauthorized: If caller does not hold role.
        """
        if not self.has_role(role, caller):
            raise Unauthorized(f"{caller} lacks {role} on ledger {self.name}")

    # ========================================================================
    # TEST SEEDING (Mutating)
    # ========================================================================

    def set_account(self, account_id: str, state: AccountState) -> None:
        """
        Overwrite an account's state directly.

        WARNING: This bypasses the transaction log and is only available in
        test mode. Use fund()/transfer()/execute() in production.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_account() is disabled in production mode. "
                "Use fund() or execute() to modify accounts. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if not account_id or not account_id.strip():
            raise ValueError("account_id cannot be empty")
        previous = self.accounts.get(account_id, EMPTY_ACCOUNT).principal
        self._seeded_principal += state.principal - previous
        self.accounts[account_id] = state

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{timestamp_seconds}
        """
        delta = self._current_time - datetime(1970, 1, 1, tzinfo=self._current_time.tzinfo)
        seconds = delta.days * 86400 + delta.seconds
        return f"exec:{self.name}:{sequence:012d}:{seconds}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All account changes are applied together or none is. Execution is
        idempotent: a pending transaction with the same intent_id is not
        applied twice.

        Validation:
        - Timestamp must not be in the future
        - Every change's old_state must match the account's current state

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if the intent was already executed
            ExecuteResult.REJECTED if validation failed (nothing changed)
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        valid, reason = self._validate_pending(pending)
        if not valid:
            if self.verbose:
                print(f"✗ REJECTED: {reason}")
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            changes=pending.changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
        )

        self._apply_changes(tx.changes)

        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return ExecuteResult.APPLIED

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print transaction details (Transaction.__repr__) with a result line."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))
        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate a pending transaction against the current ledger state.

        Returns:
            Tuple of (success: bool, reason: str)
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        for change in pending.changes:
            current = self.accounts.get(change.account)
            if current != change.old_state:
                return False, (
                    f"stale state for {change.account}: "
                    f"expected {change.old_state!r}, found {current!r}"
                )
        return True, ""

    def _apply_changes(self, changes: Tuple[AccountChange, ...]) -> None:
        for change in changes:
            if change.old_state is None and self.verbose:
                print(f"📝 Opened account: {change.account}")
            self.accounts[change.account] = change.new_state

    def _execute_or_raise(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a freshly computed transaction, raising unless it applied.

        A fresh computation never repeats an executed intent, so
        ALREADY_APPLIED here means the operation did not happen.
        """
        result = self.execute(pending)
        if result == ExecuteResult.REJECTED:
            raise LedgerError(f"Transaction {pending.intent_id} rejected by ledger {self.name}")
        if result == ExecuteResult.ALREADY_APPLIED:
            raise LedgerError(
                f"Transaction {pending.intent_id} was already applied on ledger {self.name}"
            )
        return result

    # ========================================================================
    # LEDGER OPERATIONS (build + execute)
    # ========================================================================

    def settle(self, account_id: str) -> ExecuteResult:
        """Convert accrued interest of account_id into principal."""
        return self._execute_or_raise(compute_settle(self, account_id))

    def fund(self, account_id: str, amount: int) -> ExecuteResult:
        """Settle, lock in the current global rate, then credit amount."""
        return self._execute_or_raise(compute_fund(self, self.authority, account_id, amount))

    def withdraw(self, account_id: str, amount: int) -> ExecuteResult:
        """Settle, then debit amount (MAX_AMOUNT for everything)."""
        return self._execute_or_raise(compute_withdraw(self, account_id, amount))

    def transfer(self, sender: str, recipient: str, amount: int) -> ExecuteResult:
        """Move amount between two accounts with settlement and rate inheritance."""
        return self._execute_or_raise(compute_transfer(self, sender, recipient, amount))

    def mint(
        self,
        caller: str,
        account_id: str,
        amount: int,
        origin: Optional[TransactionOrigin] = None,
    ) -> ExecuteResult:
        """
        Fund account_id on behalf of a mint/burn role holder.

        The account locks in the authority's current rate, exactly as fund()
        does. Carried rates only arrive through bridge messages.

        Args:
            caller: Role holder (vault, bridge pool)
            account_id: Account credited
            amount: Principal to add
            origin: Transaction origin (default: an ADMIN origin for caller)

        Raises:
            Unauthorized: If caller lacks MINT_AND_BURN_ROLE.
        """
        self.require_role(MINT_AND_BURN_ROLE, caller)
        if origin is None:
            origin = TransactionOrigin(OriginType.ADMIN, caller, account_id, EVENT_FUND)
        return self._execute_or_raise(
            compute_fund(self, self.authority, account_id, amount, origin)
        )

    def burn(
        self,
        caller: str,
        account_id: str,
        amount: int,
        origin: Optional[TransactionOrigin] = None,
    ) -> ExecuteResult:
        """
        Debit account_id on behalf of a mint/burn role holder.

        Raises:
            Unauthorized: If caller lacks MINT_AND_BURN_ROLE.
            InsufficientBalance: If amount exceeds the settled balance.
        """
        self.require_role(MINT_AND_BURN_ROLE, caller)
        require_uint(amount, "amount")
        if origin is None:
            origin = TransactionOrigin(OriginType.ADMIN, caller, account_id, EVENT_WITHDRAW)
        return self._execute_or_raise(compute_withdraw(self, account_id, amount, origin))

    # ========================================================================
    # TEMPORAL OPERATIONS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create an independent copy of this ledger.

        Account states are immutable, so copying the mappings is enough.
        The rate authority is shared: it is an external dependency, not
        ledger state.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned.authority = self.authority
        cloned.accounts = dict(self.accounts)
        cloned.seen_intent_ids = set(self.seen_intent_ids)
        cloned.transaction_log = list(self.transaction_log)
        cloned._current_time = self._current_time
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned._next_sequence = self._next_sequence
        cloned._roles = {role: set(holders) for role, holders in self._roles.items()}
        cloned._seeded_principal = self._seeded_principal
        return cloned

    def clone_at(self, target_time: datetime) -> Ledger:
        """
        Reconstruct this ledger as it existed at a past time.

        Clones the current state, then walks backward through every
        transaction executed after target_time restoring each change's
        old_state (removing accounts that did not exist yet).

        Raises:
            ValueError: If target_time is in the future
        """
        if target_time > self._current_time:
            raise ValueError(f"Target time {target_time} is in the future")

        cloned = self.clone()
        cloned._current_time = target_time
        cloned.transaction_log = [
            tx for tx in self.transaction_log
            if tx.execution_time <= target_time
        ]
        cloned.seen_intent_ids = {tx.intent_id for tx in cloned.transaction_log}
        cloned._next_sequence = len(cloned.transaction_log)

        for tx in reversed(self.transaction_log):
            if tx.execution_time <= target_time:
                break
            for change in tx.changes:
                if change.old_state is None:
                    cloned.accounts.pop(change.account, None)
                else:
                    cloned.accounts[change.account] = change.old_state

        return cloned

    def replay(self, from_tx: int = 0) -> Ledger:
        """
        Create a new ledger by re-executing the transaction log.

        Accounts seeded with set_account() are NOT replayed because they are
        not part of the log; use clone() or clone_at() to keep them.

        Raises:
            LedgerError: If a logged transaction is rejected during replay
        """
        new_ledger = Ledger(
            name=f"{self.name}_replayed",
            authority=self.authority,
            initial_time=datetime(1970, 1, 1),
            verbose=self.verbose,
            test_mode=self._test_mode,
        )
        new_ledger._roles = {role: set(holders) for role, holders in self._roles.items()}

        for tx in self.transaction_log[from_tx:]:
            if tx.timestamp > new_ledger._current_time:
                new_ledger.advance_time(tx.timestamp)

            pending = PendingTransaction(
                changes=tx.changes,
                origin=tx.origin,
                timestamp=tx.timestamp,
                intent_id=tx.intent_id,
            )
            result = new_ledger.execute(pending)
            if result == ExecuteResult.REJECTED:
                raise LedgerError(f"Replay failed at tx {tx.exec_id}")

        return new_ledger

    def __repr__(self) -> str:
        return (f"Ledger({self.name}, accounts={len(self.accounts)}, "
                f"txs={len(self.transaction_log)}, time={self._current_time.isoformat()})")
