"""
Data models for storage layer.

Defines the cycle, bill and ledger event records owned by the ledger store.
Money is an integer count of subunits, timestamps are UNIX seconds (UTC).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class BillCategory(Enum):
    """Spending category attached to a bill."""
    HOUSING = "housing"
    UTILITIES = "utilities"
    TRANSPORTATION = "transportation"
    FOOD = "food"
    HEALTHCARE = "healthcare"
    INSURANCE = "insurance"
    ENTERTAINMENT = "entertainment"
    EDUCATION = "education"
    DEBT = "debt"
    OTHER = "other"


class EventKind(Enum):
    """State transitions recorded in the append-only event ledger."""
    CYCLE_CREATED = "cycle_created"
    CYCLE_ENDED = "cycle_ended"
    BILL_ADDED = "bill_added"
    BILL_PAID = "bill_paid"
    BILL_CANCELLED = "bill_cancelled"
    BILL_SKIPPED = "bill_skipped"


@dataclass(frozen=True)
class Cycle:
    """A single lock period of deposited funds.

    Records are replaced, never mutated in place; ``is_active`` only ever
    moves from True to False.
    """
    id: int
    owner: str
    start_date: int
    end_date: int
    total_deposited: int
    operating_fee: int
    fee_percentage: int
    is_active: bool = True
    last_adjustment_month: int = 0
    total_paid: int = 0

    @property
    def available(self) -> int:
        """Funds that can be allocated to bills (deposit minus fee)."""
        return self.total_deposited - self.operating_fee


@dataclass(frozen=True)
class Bill:
    """A payment obligation inside exactly one cycle.

    A recurring bill keeps its id across occurrences: ``due_date`` and
    ``is_paid`` always describe the current occurrence only.
    ``settled_occurrences`` counts occurrences already paid or skipped.
    """
    id: int
    cycle_id: int
    name: str
    amount: int
    due_date: int
    is_paid: bool = False
    is_recurring: bool = False
    recurrence_calendar: Tuple[int, ...] = ()
    category: BillCategory = BillCategory.OTHER
    last_paid_date: Optional[int] = None
    settled_occurrences: int = 0


@dataclass(frozen=True)
class BillDraft:
    """Caller-supplied description of a bill that does not exist yet."""
    name: str
    amount: int
    due_date: int
    is_recurring: bool = False
    recurrence_calendar: Tuple[int, ...] = ()
    category: BillCategory = BillCategory.OTHER


@dataclass(frozen=True)
class LedgerEvent:
    """Immutable audit record of a cycle or bill state transition.

    Append-only: once written, these records are never modified.
    """
    timestamp: int
    kind: EventKind
    cycle_id: int
    bill_id: Optional[int] = None
    account: Optional[str] = None
    amount: int = 0
