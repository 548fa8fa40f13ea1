"""
Bill admission, cancellation and skipping.

Validation Order (per bill, all before anything is written):
1. Cycle - exists, caller owns it, still active
2. Amount - strictly positive
3. Due date - inside the cycle span, at least 7 days ahead, on day 1-28
4. Recurrence - a calendar listing exactly the months the bill falls due in

A batch is admitted or rejected as a whole. Checks and writes share one
store transaction, for cancel and skip too. Allocation against the
cycle's funds is deliberately not checked here; callers run
``AllocationValidator`` before submitting bills.
"""

from dataclasses import replace
from typing import List, Sequence, Tuple

from .context import EngineContext
from .errors import (
    AdjustmentLimitReachedError,
    BillAlreadyPaidError,
    BillNotFoundError,
    CycleNotActiveError,
    CycleNotFoundError,
    InvalidAmountError,
    InvalidBatchError,
    InvalidDueDateError,
    InvalidLeadTimeError,
    InvalidRecurrenceError,
    UnauthorizedError,
)
from .recurrence import (
    SECONDS_PER_DAY,
    advance_occurrence,
    build_recurrence_calendar,
    current_month,
    day_of_month,
    is_valid_day_of_month,
    seconds_into_day,
    to_datetime,
)
from bill_guard.logging_config import LogContext, get_logger
from bill_guard.storage.models import Bill, BillDraft, Cycle, EventKind, LedgerEvent

logger = get_logger("core.bills")

MIN_LEAD_TIME_DAYS = 7
MIN_LEAD_TIME_SECONDS = MIN_LEAD_TIME_DAYS * SECONDS_PER_DAY


class BillManager:
    """Adds, cancels, skips and reads bills."""

    def __init__(self, context: EngineContext):
        self.context = context

    @property
    def repository(self):
        return self.context.repository

    def _load_cycle(self, cycle_id: int) -> Cycle:
        cycle = self.repository.get_cycle(cycle_id)
        if cycle is None:
            raise CycleNotFoundError(cycle_id)
        return cycle

    def _load_owned_active_cycle(self, cycle_id: int, caller: str, operation: str) -> Cycle:
        cycle = self._load_cycle(cycle_id)
        if caller != cycle.owner:
            raise UnauthorizedError(caller, operation)
        if not cycle.is_active:
            raise CycleNotActiveError(cycle_id)
        return cycle

    def add_bill(self, cycle_id: int, draft: BillDraft, caller: str) -> int:
        return self.add_bills(cycle_id, [draft], caller)[0]

    def add_bills(self, cycle_id: int, drafts: Sequence[BillDraft], caller: str) -> List[int]:
        """Admit a batch of bills into a cycle.

        Args:
            cycle_id: Cycle the bills belong to
            drafts: Bills to add, in order
            caller: Account submitting the bills; must own the cycle

        Returns:
            New bill ids in the order of ``drafts``

        Raises:
            CycleNotFoundError, UnauthorizedError, CycleNotActiveError:
                If the cycle cannot take bills from ``caller``
            ValidationError: If any draft is malformed; nothing is stored
        """
        if not drafts:
            return []

        bill_ids = []
        with self.repository.transaction():
            cycle = self._load_owned_active_cycle(cycle_id, caller, "add bills")
            now = self.context.now()
            prepared = [self._validate_draft(cycle, draft, now) for draft in drafts]

            for draft in prepared:
                bill = self.repository.insert_bill(
                    cycle_id=cycle.id,
                    name=draft.name,
                    amount=draft.amount,
                    due_date=draft.due_date,
                    is_recurring=draft.is_recurring,
                    recurrence_calendar=draft.recurrence_calendar,
                    category=draft.category
                )
                self.repository.append_event(LedgerEvent(
                    timestamp=now,
                    kind=EventKind.BILL_ADDED,
                    cycle_id=cycle.id,
                    bill_id=bill.id,
                    amount=bill.amount
                ))
                bill_ids.append(bill.id)

        logger.info(
            "bills_added",
            extra={"cycle_id": cycle.id, "bill_ids": bill_ids, "actor": caller}
        )
        return bill_ids

    def _validate_draft(self, cycle: Cycle, draft: BillDraft, now: int) -> BillDraft:
        """Check one draft and return it with its final recurrence calendar."""
        if draft.amount <= 0:
            raise InvalidAmountError(f"Bill '{draft.name}' amount must be > 0", draft.amount)

        if not cycle.start_date <= draft.due_date <= cycle.end_date:
            raise InvalidDueDateError(
                f"Bill '{draft.name}' due date must fall within the cycle "
                f"[{cycle.start_date}, {cycle.end_date}]",
                draft.due_date
            )

        if draft.due_date < now + MIN_LEAD_TIME_SECONDS:
            raise InvalidLeadTimeError(
                f"Bill '{draft.name}' must be due at least {MIN_LEAD_TIME_DAYS} days from now",
                draft.due_date
            )

        day = day_of_month(draft.due_date)
        if not is_valid_day_of_month(day):
            raise InvalidDueDateError(
                f"Bill '{draft.name}' must fall on day 1-28 of the month", day
            )

        if not draft.is_recurring:
            return replace(draft, recurrence_calendar=())

        expected = build_recurrence_calendar(
            draft.due_date, cycle.end_date, day, seconds_into_day(draft.due_date)
        )
        calendar = tuple(draft.recurrence_calendar)
        if not calendar:
            return replace(draft, recurrence_calendar=expected)

        for month in calendar:
            if not 1 <= month <= 12:
                raise InvalidRecurrenceError(
                    f"Recurring bill '{draft.name}' has invalid month {month}", month
                )
        if len(set(calendar)) != len(calendar):
            raise InvalidRecurrenceError(
                f"Recurring bill '{draft.name}' lists a month more than once", calendar
            )
        if to_datetime(draft.due_date).month not in calendar:
            raise InvalidRecurrenceError(
                f"Recurring bill '{draft.name}' calendar must include the due date's month",
                calendar
            )
        # The calendar length is the number of payments, so it must match
        # every occurrence left in the cycle
        if set(calendar) != set(expected):
            raise InvalidRecurrenceError(
                f"Recurring bill '{draft.name}' on day {day} falls due in month(s) "
                f"{list(expected)} within the cycle, not {list(calendar)}",
                calendar
            )

        # Stored in occurrence order regardless of the order supplied
        return replace(draft, recurrence_calendar=expected)

    def _load_adjustment_batch(
        self,
        bill_ids: Sequence[int],
        caller: str,
        operation: str
    ) -> Tuple[Cycle, List[Bill], int, int]:
        """Load and check a cancel or skip batch; must run inside a transaction.

        Returns:
            The cycle, its bills in the order of ``bill_ids``, the adjustment
            month and the current time
        """
        if not bill_ids:
            raise InvalidBatchError(f"No bills to {operation}")
        if len(set(bill_ids)) != len(bill_ids):
            raise InvalidBatchError("Bill ids must not repeat", list(bill_ids))

        bills = []
        for bill_id in bill_ids:
            bill = self.repository.get_bill(bill_id)
            if bill is None:
                raise BillNotFoundError(bill_id)
            bills.append(bill)

        cycle_ids = {bill.cycle_id for bill in bills}
        if len(cycle_ids) != 1:
            raise InvalidBatchError("All bills must belong to the same cycle", sorted(cycle_ids))

        cycle = self._load_owned_active_cycle(cycle_ids.pop(), caller, f"{operation} bills")

        for bill in bills:
            if bill.is_paid:
                raise BillAlreadyPaidError(bill.id)

        now = self.context.now()
        month = current_month(now)
        if month == cycle.last_adjustment_month:
            raise AdjustmentLimitReachedError(cycle.id, month)
        return cycle, bills, month, now

    def cancel_bill(self, bill_id: int, caller: str) -> None:
        self.cancel_bills([bill_id], caller)

    def cancel_bills(self, bill_ids: Sequence[int], caller: str) -> None:
        """Delete unpaid bills of one cycle as a single monthly adjustment.

        Raises:
            InvalidBatchError: If the batch is empty, repeats an id, or spans
                more than one cycle
            BillNotFoundError: If any id is unknown
            UnauthorizedError: If ``caller`` does not own the cycle
            CycleNotActiveError: If the cycle has ended
            BillAlreadyPaidError: If any bill's current occurrence is paid
            AdjustmentLimitReachedError: If the cycle already made an
                adjustment in the current month
        """
        with LogContext.bind(actor=caller):
            with self.repository.transaction():
                cycle, bills, month, now = self._load_adjustment_batch(bill_ids, caller, "cancel")
                self.repository.delete_bills([bill.id for bill in bills])
                for bill in bills:
                    self.repository.append_event(LedgerEvent(
                        timestamp=now,
                        kind=EventKind.BILL_CANCELLED,
                        cycle_id=cycle.id,
                        bill_id=bill.id,
                        amount=bill.amount
                    ))
                self.repository.update_cycle(replace(cycle, last_adjustment_month=month))

            logger.info(
                "bills_cancelled",
                extra={
                    "cycle_id": cycle.id,
                    "bill_ids": [bill.id for bill in bills],
                    "adjustment_month": month,
                }
            )

    def skip_bill(self, bill_id: int, caller: str) -> None:
        self.skip_bills([bill_id], caller)

    def skip_bills(self, bill_ids: Sequence[int], caller: str) -> None:
        """Skip the current occurrence of bills as a single monthly adjustment.

        A recurring bill moves on to its next occurrence without any payment,
        and the skipped occurrence counts against its recurrence calendar; if
        it was the last one, the bill becomes terminal. A one-time bill has
        no next occurrence and is deleted.

        Raises:
            Same as :meth:`cancel_bills`
        """
        with LogContext.bind(actor=caller):
            with self.repository.transaction():
                cycle, bills, month, now = self._load_adjustment_batch(bill_ids, caller, "skip")
                removed = [bill.id for bill in bills if not bill.is_recurring]
                if removed:
                    self.repository.delete_bills(removed)
                for bill in bills:
                    if bill.is_recurring:
                        settled = bill.settled_occurrences + 1
                        next_due, is_terminal = advance_occurrence(
                            bill.due_date, cycle.end_date, len(bill.recurrence_calendar) - settled
                        )
                        self.repository.update_bill(replace(
                            bill,
                            due_date=next_due,
                            is_paid=is_terminal,
                            settled_occurrences=settled
                        ))
                    self.repository.append_event(LedgerEvent(
                        timestamp=now,
                        kind=EventKind.BILL_SKIPPED,
                        cycle_id=cycle.id,
                        bill_id=bill.id,
                        amount=bill.amount
                    ))
                self.repository.update_cycle(replace(cycle, last_adjustment_month=month))

            logger.info(
                "bills_skipped",
                extra={
                    "cycle_id": cycle.id,
                    "bill_ids": [bill.id for bill in bills],
                    "removed_bill_ids": removed,
                    "adjustment_month": month,
                }
            )

    def get_bill(self, bill_id: int) -> Bill:
        bill = self.repository.get_bill(bill_id)
        if bill is None:
            raise BillNotFoundError(bill_id)
        return bill

    def get_cycle_bills(self, cycle_id: int) -> List[int]:
        self._load_cycle(cycle_id)
        return self.repository.list_cycle_bill_ids(cycle_id)

    def list_cycle_bills(self, cycle_id: int) -> List[Bill]:
        self._load_cycle(cycle_id)
        return self.repository.list_cycle_bills(cycle_id)
