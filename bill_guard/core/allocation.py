"""
Allocation checks for cycle funds.

Decides whether a set of proposed bills fits in what a cycle can still
cover. Pure arithmetic over records; ``AllocationValidator`` only adds the
store lookups.

Allocation rules:
1. Recurring bill - amount times the number of months in its calendar
2. One-time bill - its amount while unpaid, nothing once paid
3. Available funds - total deposited minus the operating fee
"""

from dataclasses import dataclass
from typing import Iterable, Sequence

from .errors import AllocationExceededError, CycleNotFoundError
from .recurrence import build_recurrence_calendar, seconds_into_day, day_of_month
from bill_guard.storage.models import Bill, BillDraft, Cycle
from bill_guard.storage.repository import LedgerRepository


@dataclass(frozen=True)
class AllocationSummary:
    """Funds picture for one cycle."""
    available: int
    allocated: int

    @property
    def remaining(self) -> int:
        return self.available - self.allocated

    @property
    def exceeded(self) -> bool:
        return self.allocated > self.available


def bill_allocation(bill: Bill) -> int:
    """Subunits a stored bill still holds against its cycle."""
    if bill.is_recurring:
        return bill.amount * len(bill.recurrence_calendar)
    return 0 if bill.is_paid else bill.amount


def draft_allocation(draft: BillDraft, cycle: Cycle) -> int:
    """Subunits a proposed bill would hold against ``cycle``.

    A recurring draft without a calendar is counted with the calendar the
    scheduler would assign it.
    """
    if not draft.is_recurring:
        return draft.amount

    calendar = draft.recurrence_calendar
    if not calendar:
        calendar = build_recurrence_calendar(
            draft.due_date,
            cycle.end_date,
            day_of_month(draft.due_date),
            seconds_into_day(draft.due_date)
        )
    return draft.amount * len(calendar)


def summarize_allocation(cycle: Cycle, bills: Iterable[Bill]) -> AllocationSummary:
    return AllocationSummary(
        available=cycle.available,
        allocated=sum(bill_allocation(bill) for bill in bills)
    )


def check_allocation(
    cycle: Cycle,
    bills: Iterable[Bill],
    drafts: Sequence[BillDraft]
) -> AllocationSummary:
    """Check that existing plus proposed bills fit in the cycle's available funds.

    Args:
        cycle: Cycle the drafts would be added to
        bills: Bills already stored in the cycle
        drafts: Proposed bills

    Returns:
        AllocationSummary including the proposed bills

    Raises:
        AllocationExceededError: If the combined allocation exceeds the
            available funds
    """
    current = summarize_allocation(cycle, bills)
    requested = sum(draft_allocation(draft, cycle) for draft in drafts)
    summary = AllocationSummary(
        available=current.available,
        allocated=current.allocated + requested
    )
    if summary.exceeded:
        raise AllocationExceededError(cycle.id, current.remaining, requested)
    return summary


class AllocationValidator:
    """Runs allocation checks against cycles in the ledger store."""

    def __init__(self, repository: LedgerRepository):
        self.repository = repository

    def _load_cycle(self, cycle_id: int) -> Cycle:
        cycle = self.repository.get_cycle(cycle_id)
        if cycle is None:
            raise CycleNotFoundError(cycle_id)
        return cycle

    def summarize(self, cycle_id: int) -> AllocationSummary:
        cycle = self._load_cycle(cycle_id)
        return summarize_allocation(cycle, self.repository.list_cycle_bills(cycle_id))

    def validate(self, cycle_id: int, drafts: Sequence[BillDraft]) -> AllocationSummary:
        cycle = self._load_cycle(cycle_id)
        return check_allocation(cycle, self.repository.list_cycle_bills(cycle_id), drafts)
