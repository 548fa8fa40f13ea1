"""
Funds movement between accounts.

The engine only needs one primitive from the outside world: move an amount
from one account to another, atomically, or fail. ``LedgerFunds`` keeps
balances in the ledger store so a transfer commits or rolls back together
with the state change that caused it.
"""

from abc import ABC, abstractmethod

from bill_guard.core.errors import TransferFailedError
from .repository import LedgerRepository


class FundsGateway(ABC):
    """Synchronous transfer interface used by the cycle and payment managers."""

    @abstractmethod
    def transfer(self, source: str, destination: str, amount: int) -> None:
        """Move ``amount`` subunits from ``source`` to ``destination``.

        Raises:
            TransferFailedError: If the transfer cannot be completed. A
                failed transfer moves nothing.
        """
        ...

    @abstractmethod
    def balance_of(self, account: str) -> int:
        ...


class LedgerFunds(FundsGateway):
    """Account balances stored alongside the ledger."""

    def __init__(self, repository: LedgerRepository):
        self.repository = repository

    def transfer(self, source: str, destination: str, amount: int) -> None:
        if amount <= 0:
            raise TransferFailedError(source, destination, amount, "amount must be positive")
        if source == destination:
            raise TransferFailedError(source, destination, amount, "source and destination are the same")

        with self.repository.transaction():
            available = self.repository.get_balance(source)
            if available < amount:
                raise TransferFailedError(
                    source, destination, amount,
                    f"insufficient balance ({available} available)"
                )
            self.repository.set_balance(source, available - amount)
            self.repository.set_balance(destination, self.repository.get_balance(destination) + amount)

    def balance_of(self, account: str) -> int:
        return self.repository.get_balance(account)

    def credit(self, account: str, amount: int) -> int:
        """Add externally sourced funds to an account and return the new balance."""
        if amount <= 0:
            raise ValueError("credit amount must be > 0")
        with self.repository.transaction():
            balance = self.repository.get_balance(account) + amount
            self.repository.set_balance(account, balance)
        return balance
