"""
Cycle lifecycle management.

A cycle locks a deposit for 1-12 thirty-day months. The operating fee is
taken when the cycle is created and forwarded to the fee recipient; when the
cycle ends, whatever was not paid out to bills is returned to the owner.

Every mutating operation runs in one store transaction: the cycle is read
and checked, state is written and funds are moved last, so a failed
transfer undoes the whole call.
"""

from dataclasses import replace
from typing import List

from .context import EngineContext
from .errors import (
    CycleAlreadyEndedError,
    CycleNotEndedError,
    CycleNotFoundError,
    InvalidAmountError,
    InvalidDurationError,
    UnauthorizedError,
)
from .money import calculate_fee
from .recurrence import MONTH_SECONDS
from bill_guard.logging_config import LogContext, get_logger
from bill_guard.storage.models import Cycle, EventKind, LedgerEvent

logger = get_logger("core.cycles")

MIN_DURATION_MONTHS = 1
MAX_DURATION_MONTHS = 12


class CycleManager:
    """Creates, closes and reads cycles."""

    def __init__(self, context: EngineContext):
        self.context = context

    @property
    def repository(self):
        return self.context.repository

    def create_cycle(self, owner: str, duration_months: int, amount: int) -> int:
        """Lock ``amount`` subunits from ``owner`` for ``duration_months`` months.

        Args:
            owner: Account that deposits and later receives bill payments
            duration_months: Cycle length in 30-day months, 1-12
            amount: Deposit in subunits

        Returns:
            The new cycle id

        Raises:
            InvalidDurationError: If the duration is outside 1-12
            InvalidAmountError: If the amount is not positive
            TransferFailedError: If the deposit or fee transfer fails; no
                cycle is recorded in that case
        """
        if not MIN_DURATION_MONTHS <= duration_months <= MAX_DURATION_MONTHS:
            raise InvalidDurationError(
                f"Duration must be between {MIN_DURATION_MONTHS} and {MAX_DURATION_MONTHS} months",
                duration_months
            )
        if amount <= 0:
            raise InvalidAmountError("Deposit amount must be > 0", amount)

        settings = self.context.settings
        now = self.context.now()
        fee = calculate_fee(amount, settings.fee_percentage)

        with self.repository.transaction():
            cycle = self.repository.insert_cycle(
                owner=owner,
                start_date=now,
                end_date=now + duration_months * MONTH_SECONDS,
                total_deposited=amount,
                operating_fee=fee,
                fee_percentage=settings.fee_percentage
            )
            self.repository.append_event(LedgerEvent(
                timestamp=now,
                kind=EventKind.CYCLE_CREATED,
                cycle_id=cycle.id,
                account=owner,
                amount=amount
            ))
            self.context.funds.transfer(owner, settings.custody_account, amount)
            if fee > 0:
                self.context.funds.transfer(settings.custody_account, settings.fee_recipient, fee)

        logger.info(
            "cycle_created",
            extra={
                "cycle_id": cycle.id,
                "owner": owner,
                "deposit": amount,
                "operating_fee": fee,
                "end_date": cycle.end_date,
            }
        )
        return cycle.id

    def end_cycle(self, cycle_id: int, caller: str) -> int:
        """Close a cycle on or after its end date and return the surplus.

        Raises:
            CycleNotFoundError: If the cycle does not exist
            UnauthorizedError: If ``caller`` is not the owner
            CycleNotEndedError: If the end date has not been reached
            CycleAlreadyEndedError: If the cycle is already closed
        """
        return self._close(cycle_id, caller, as_admin=False)

    def admin_end_cycle(self, cycle_id: int, caller: str) -> int:
        """Force-close a cycle regardless of its end date."""
        self.context.require_admin(caller, "force-end cycle")
        return self._close(cycle_id, caller, as_admin=True)

    def _close(self, cycle_id: int, caller: str, as_admin: bool) -> int:
        with LogContext.bind(cycle_id=cycle_id, actor=caller):
            with self.repository.transaction():
                # Read under the write lock so the surplus is released once
                cycle = self.get_cycle(cycle_id)
                now = self.context.now()
                if not as_admin:
                    if caller != cycle.owner:
                        raise UnauthorizedError(caller, "end cycle")
                    if now < cycle.end_date:
                        raise CycleNotEndedError(cycle_id, cycle.end_date)
                if not cycle.is_active:
                    raise CycleAlreadyEndedError(cycle.id)

                # Only paid amounts count; unpaid allocation goes back to the owner
                surplus = cycle.available - cycle.total_paid

                self.repository.update_cycle(replace(cycle, is_active=False))
                self.repository.append_event(LedgerEvent(
                    timestamp=now,
                    kind=EventKind.CYCLE_ENDED,
                    cycle_id=cycle.id,
                    account=cycle.owner,
                    amount=max(surplus, 0)
                ))
                if surplus > 0:
                    self.context.funds.transfer(
                        self.context.settings.custody_account, cycle.owner, surplus
                    )

            logger.info("cycle_ended", extra={"surplus": surplus, "total_paid": cycle.total_paid})
        return surplus

    def get_cycle(self, cycle_id: int) -> Cycle:
        cycle = self.repository.get_cycle(cycle_id)
        if cycle is None:
            raise CycleNotFoundError(cycle_id)
        return cycle

    def get_user_cycles(self, owner: str) -> List[int]:
        return self.repository.list_user_cycle_ids(owner)

    def get_all_cycles(self, caller: str) -> List[int]:
        """List every cycle id. Admin only."""
        self.context.require_admin(caller, "list all cycles")
        return self.repository.list_cycle_ids()
