"""
vault.py - Deposit/Redeem Boundary

Exchanges an external base asset for ledger principal:

    deposit(user, amount): base asset received -> Ledger.mint at the current rate
    redeem(user, amount):  pay out base asset -> Ledger.burn (MAX_AMOUNT = everything)

The vault keeps a reserve of the base asset it holds. Interest is paid from
rewards added to the reserve with add_rewards(); a redemption the reserve (or
the payout callable) cannot cover is a hard abort: the burn, including its
settlement, is not applied.
"""

from __future__ import annotations
from typing import Callable, Optional

from .core import (
    TransactionOrigin, OriginType, ExecuteResult,
    MINT_AND_BURN_ROLE, EVENT_FUND, EVENT_WITHDRAW,
    LedgerError, ExternalTransferFailed,
    checked_add, require_uint,
)
from .accrual import compute_withdraw, resolve_amount
from .ledger import Ledger


# Payout type: (user, amount) -> None, raises on delivery failure
Payout = Callable[[str, int], None]


def _no_payout(user: str, amount: int) -> None:
    return None


class Vault:
    """
    Escrow that turns base-asset deposits into ledger funding.

    The vault acts on the ledger as `caller`, which must hold
    MINT_AND_BURN_ROLE.

    Example:
        vault = Vault(ledger, caller="vault", payout=bank.send)
        vault.deposit("alice", 1000)
        vault.add_rewards(50)
        vault.redeem("alice", MAX_AMOUNT)
    """

    def __init__(
        self,
        ledger: Ledger,
        caller: str = "vault",
        payout: Optional[Payout] = None,
    ):
        self.ledger = ledger
        self.caller = caller
        self.payout = payout or _no_payout
        self._reserve = 0

    @property
    def reserve(self) -> int:
        """Base asset currently held."""
        return self._reserve

    def add_rewards(self, amount: int) -> None:
        """Add base asset that backs accrued interest."""
        require_uint(amount, "amount")
        self._reserve = checked_add(self._reserve, amount)

    def deposit(self, user: str, amount: int) -> ExecuteResult:
        """
        Receive amount of base asset and fund user at the current global rate.

        Raises:
            Unauthorized: If the vault lacks MINT_AND_BURN_ROLE.
            ValueError: If amount is zero or invalid.
        """
        require_uint(amount, "amount")
        if amount == 0:
            raise ValueError("deposit amount must be positive")

        origin = TransactionOrigin(OriginType.VAULT, self.caller, user, EVENT_FUND)
        result = self.ledger.mint(self.caller, user, amount, origin)

        self._reserve = checked_add(self._reserve, amount)
        if self.ledger.verbose:
            print(f"🏦 Deposit: {user} +{amount} (reserve {self._reserve})")
        return result

    def redeem(self, user: str, amount: int) -> int:
        """
        Burn amount from user and release the same amount of base asset.

        Returns the amount redeemed (MAX_AMOUNT resolved).

        Raises:
            Unauthorized: If the vault lacks MINT_AND_BURN_ROLE.
            InsufficientBalance: If amount exceeds the user's settled balance.
            ExternalTransferFailed: If the reserve cannot cover the amount or
                the payout fails. The ledger is left unchanged.
            LedgerError: If this redemption intent was already applied.
        """
        self.ledger.require_role(MINT_AND_BURN_ROLE, self.caller)
        amount = resolve_amount(self.ledger, user, amount)

        origin = TransactionOrigin(OriginType.VAULT, self.caller, user, EVENT_WITHDRAW)
        pending = compute_withdraw(self.ledger, user, amount, origin)
        if self.ledger.is_applied(pending.intent_id):
            raise LedgerError(f"Redemption {pending.intent_id} for {user} was already applied")

        if amount > self._reserve:
            raise ExternalTransferFailed(
                f"reserve {self._reserve} cannot cover redemption of {amount} for {user}"
            )
        try:
            self.payout(user, amount)
        except Exception as e:
            raise ExternalTransferFailed(f"payout of {amount} to {user} failed: {e}") from e

        # Same state as above, so burn() applies the transaction just validated
        self.ledger.burn(self.caller, user, amount, origin)

        self._reserve -= amount
        if self.ledger.verbose:
            print(f"🏦 Redeem: {user} -{amount} (reserve {self._reserve})")
        return amount

    def __repr__(self) -> str:
        return f"Vault({self.ledger.name}, caller={self.caller}, reserve={self._reserve})"
