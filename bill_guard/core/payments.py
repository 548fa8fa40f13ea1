"""
Bill payment processing.

Both payment paths share one flow inside a single store transaction: the
bill and cycle are read and checked, state changes are written, then funds
are transferred last. A failed transfer rolls the bill and cycle back to
their prior state. A recurring bill becomes terminal on the settlement that
uses up its recurrence calendar.

Checks (owner path, in order):
1. Bill and cycle exist, caller owns the cycle
2. Current occurrence not yet paid
3. Cycle still active
4. Today is the bill's due day (UTC calendar day)
5. The payment stays within the cycle's available funds

The admin path checks the caller against the configured admin first and
skips the due-day check.
"""

from dataclasses import dataclass, replace

from .context import EngineContext
from .errors import (
    AllocationExceededError,
    BillAlreadyPaidError,
    BillNotDueYetError,
    BillNotFoundError,
    CycleNotActiveError,
    CycleNotFoundError,
    UnauthorizedError,
)
from .recurrence import advance_occurrence, same_day
from bill_guard.logging_config import LogContext, get_logger
from bill_guard.storage.models import Bill, Cycle, EventKind, LedgerEvent

logger = get_logger("core.payments")


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of a successful payment."""
    bill_id: int
    cycle_id: int
    amount: int
    paid_due_date: int
    next_due_date: int
    is_terminal: bool


class PaymentProcessor:
    """Releases bill amounts from custody to cycle owners."""

    def __init__(self, context: EngineContext):
        self.context = context

    @property
    def repository(self):
        return self.context.repository

    def _load_bill(self, bill_id: int) -> Bill:
        bill = self.repository.get_bill(bill_id)
        if bill is None:
            raise BillNotFoundError(bill_id)
        return bill

    def _load_cycle(self, cycle_id: int) -> Cycle:
        cycle = self.repository.get_cycle(cycle_id)
        if cycle is None:
            raise CycleNotFoundError(cycle_id)
        return cycle

    def pay_bill(self, bill_id: int, caller: str) -> PaymentResult:
        """Owner-initiated payment, allowed only on the bill's due day.

        Raises:
            BillNotFoundError, CycleNotFoundError: If the records are missing
            UnauthorizedError: If ``caller`` does not own the cycle
            BillAlreadyPaidError: If the current occurrence is paid
            CycleNotActiveError: If the cycle has ended
            BillNotDueYetError: If today is not the due day
            AllocationExceededError: If the cycle cannot cover the payment
            TransferFailedError: If the transfer fails; nothing changes
        """
        return self._pay(bill_id, caller, as_admin=False)

    def admin_pay_bill(self, bill_id: int, caller: str) -> PaymentResult:
        """Privileged payment with no due-day restriction, used by the keeper."""
        self.context.require_admin(caller, "pay bill as admin")
        return self._pay(bill_id, caller, as_admin=True)

    def _check_owner_payment(self, bill: Bill, cycle: Cycle, caller: str, now: int) -> None:
        if caller != cycle.owner:
            raise UnauthorizedError(caller, "pay bill")
        if bill.is_paid:
            raise BillAlreadyPaidError(bill.id)
        if not cycle.is_active:
            raise CycleNotActiveError(cycle.id)
        if not same_day(now, bill.due_date):
            raise BillNotDueYetError(bill.id, bill.due_date)

    def _pay(self, bill_id: int, caller: str, as_admin: bool) -> PaymentResult:
        with LogContext.bind(bill_id=bill_id, actor=caller):
            with self.repository.transaction():
                # A concurrent payment waits here and then sees the settled state
                bill = self._load_bill(bill_id)
                if as_admin and bill.is_paid:
                    raise BillAlreadyPaidError(bill.id)
                cycle = self._load_cycle(bill.cycle_id)
                now = self.context.now()
                if as_admin:
                    if not cycle.is_active:
                        raise CycleNotActiveError(cycle.id)
                else:
                    self._check_owner_payment(bill, cycle, caller, now)

                result = self._settle(bill, cycle, now)

            logger.info(
                "bill_paid",
                extra={
                    "cycle_id": result.cycle_id,
                    "amount": result.amount,
                    "paid_due_date": result.paid_due_date,
                    "next_due_date": result.next_due_date,
                    "is_terminal": result.is_terminal,
                }
            )
        return result

    def _settle(self, bill: Bill, cycle: Cycle, now: int) -> PaymentResult:
        remaining = cycle.available - cycle.total_paid
        if bill.amount > remaining:
            raise AllocationExceededError(cycle.id, remaining, bill.amount)

        settled = bill.settled_occurrences + 1
        if bill.is_recurring:
            next_due, is_terminal = advance_occurrence(
                bill.due_date, cycle.end_date, len(bill.recurrence_calendar) - settled
            )
        else:
            next_due, is_terminal = bill.due_date, True

        self.repository.update_bill(replace(
            bill,
            due_date=next_due,
            is_paid=is_terminal,
            last_paid_date=now,
            settled_occurrences=settled
        ))
        self.repository.update_cycle(replace(
            cycle, total_paid=cycle.total_paid + bill.amount
        ))
        self.repository.append_event(LedgerEvent(
            timestamp=now,
            kind=EventKind.BILL_PAID,
            cycle_id=cycle.id,
            bill_id=bill.id,
            account=cycle.owner,
            amount=bill.amount
        ))
        self.context.funds.transfer(
            self.context.settings.custody_account, cycle.owner, bill.amount
        )

        return PaymentResult(
            bill_id=bill.id,
            cycle_id=cycle.id,
            amount=bill.amount,
            paid_due_date=bill.due_date,
            next_due_date=next_due,
            is_terminal=is_terminal
        )
