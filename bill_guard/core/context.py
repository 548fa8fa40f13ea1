"""
Shared engine state handed to every manager.

Holds the privileged accounts and fee settings as injected configuration,
together with the store, the funds gateway and the clock.
"""

from dataclasses import dataclass, field

from .clock import Clock, SystemClock
from .errors import UnauthorizedError
from .money import DEFAULT_FEE_PERCENTAGE, MAX_FEE_PERCENTAGE, MIN_FEE_PERCENTAGE
from bill_guard.storage.funds import FundsGateway
from bill_guard.storage.repository import LedgerRepository

DEFAULT_CUSTODY_ACCOUNT = "custody"


@dataclass(frozen=True)
class EngineSettings:
    """Privileged accounts and fee policy."""
    admin: str
    fee_recipient: str
    fee_percentage: int = DEFAULT_FEE_PERCENTAGE
    custody_account: str = DEFAULT_CUSTODY_ACCOUNT

    def __post_init__(self):
        if not self.admin:
            raise ValueError("admin must not be empty")
        if not self.fee_recipient:
            raise ValueError("fee_recipient must not be empty")
        if not MIN_FEE_PERCENTAGE <= self.fee_percentage <= MAX_FEE_PERCENTAGE:
            raise ValueError(
                f"fee_percentage must be between {MIN_FEE_PERCENTAGE} and {MAX_FEE_PERCENTAGE}"
            )
        if self.custody_account in (self.admin, self.fee_recipient):
            raise ValueError("custody_account must differ from admin and fee_recipient")


@dataclass
class EngineContext:
    """Everything a manager needs to read and change ledger state."""
    settings: EngineSettings
    repository: LedgerRepository
    funds: FundsGateway
    clock: Clock = field(default_factory=SystemClock)

    def now(self) -> int:
        return self.clock.timestamp()

    def require_admin(self, caller: str, operation: str) -> None:
        if caller != self.settings.admin:
            raise UnauthorizedError(caller, operation)
