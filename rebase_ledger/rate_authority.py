"""
rate_authority.py - Global Rate Authority

Holds the single global rate offered to newly funded (or re-funded) accounts.

Rules:
    - The rate is initialised once and never reset.
    - Only the owner may change it (checked first).
    - A change must strictly lower the rate; later depositors always lock in
      an equal-or-lower rate than earlier ones.

The authority is an explicitly owned object: a Ledger receives it as a
constructor dependency, there is no module-level rate.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from .core import (
    DEFAULT_INITIAL_RATE,
    RateMustDecrease, Unauthorized,
    require_uint,
)


@dataclass(frozen=True, slots=True)
class RateChange:
    """Notification emitted for every accepted rate change."""
    old_rate: int
    new_rate: int
    timestamp: Optional[datetime] = None


# Subscriber type: called with each accepted RateChange
RateListener = Callable[[RateChange], None]


class RateAuthority:
    """
    Owner-controlled, decrease-only global rate.

    Example:
        authority = RateAuthority(owner="admin", initial_rate=5 * 10**10)
        authority.set_rate("admin", 4 * 10**10)      # accepted
        authority.set_rate("admin", 6 * 10**10)      # RateMustDecrease
        authority.set_rate("mallory", 1)             # Unauthorized
    """

    def __init__(
        self,
        owner: str,
        initial_rate: int = DEFAULT_INITIAL_RATE,
        verbose: bool = False,
    ):
        if not owner or not owner.strip():
            raise ValueError("owner cannot be empty")
        self._owner = owner
        self._rate = require_uint(initial_rate, "initial_rate")
        self._history: List[RateChange] = []
        self._listeners: List[RateListener] = []
        self.verbose = verbose

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def history(self) -> List[RateChange]:
        """Accepted rate changes, oldest first."""
        return list(self._history)

    def current_rate(self) -> int:
        return self._rate

    def is_owner(self, caller: str) -> bool:
        return caller == self._owner

    def require_owner(self, caller: str) -> None:
        """
        Raises:
            Unauthorized: If caller is not the owner.
        """
        if caller != self._owner:
            raise Unauthorized(f"{caller} is not the rate authority owner")

    def set_rate(
        self,
        caller: str,
        new_rate: int,
        timestamp: Optional[datetime] = None,
    ) -> RateChange:
        """
        Lower the global rate.

        Args:
            caller: Identity requesting the change (must be the owner)
            new_rate: Proposed rate, strictly below the current one
            timestamp: Optional time to stamp on the notification

        Returns:
            The RateChange that was recorded and broadcast.

        Raises:
            Unauthorized: If caller is not the owner (no state change).
            RateMustDecrease: If new_rate >= current rate (no state change).
        """
        self.require_owner(caller)
        require_uint(new_rate, "new_rate")
        if new_rate >= self._rate:
            raise RateMustDecrease(
                f"rate can only decrease: current {self._rate}, proposed {new_rate}"
            )

        change = RateChange(old_rate=self._rate, new_rate=new_rate, timestamp=timestamp)
        self._rate = new_rate
        self._history.append(change)

        if self.verbose:
            print(f"📉 Rate changed: {change.old_rate} → {change.new_rate}")

        # Listener exceptions propagate; the change itself is already recorded
        for listener in list(self._listeners):
            listener(change)
        return change

    def subscribe(self, listener: RateListener) -> None:
        """Register a callback invoked with every accepted RateChange."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: RateListener) -> None:
        self._listeners.remove(listener)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        """
        Hand the rate-change capability to a new owner.

        Raises:
            Unauthorized: If caller is not the current owner.
            ValueError: If new_owner is empty.
        """
        self.require_owner(caller)
        if not new_owner or not new_owner.strip():
            raise ValueError("new_owner cannot be empty")
        self._owner = new_owner

    def __repr__(self) -> str:
        return f"RateAuthority(owner={self._owner}, rate={self._rate}, changes={len(self._history)})"
