"""
Recurrence scheduling for bills.

Pure functions over UNIX timestamps, no I/O:

1. Calendar construction - which calendar months a recurring bill falls due
   in between two dates, for a fixed day of month.
2. Occurrence advance - where a bill's due date moves after a payment or skip.
3. Current month - the month bucket used for the adjustment limit.

Steps 2 and 3 use a fixed 30-day month. This is a known approximation:
a due date drifts one day earlier after every 31-day month, and the month
bucket does not line up with true calendar month boundaries. Both are kept
as-is so that stored state stays reproducible.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from .errors import InvalidRecurrenceError

SECONDS_PER_DAY = 86_400
DAYS_PER_MONTH = 30
MONTH_SECONDS = DAYS_PER_MONTH * SECONDS_PER_DAY

# Every month has days 1-28, so a bill on one of them recurs without clamping
MIN_DAY_OF_MONTH = 1
MAX_DAY_OF_MONTH = 28


def to_datetime(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def to_timestamp(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def day_index(timestamp: int) -> int:
    """Number of whole UTC days since the epoch."""
    return timestamp // SECONDS_PER_DAY


def same_day(first: int, second: int) -> bool:
    return day_index(first) == day_index(second)


def day_of_month(timestamp: int) -> int:
    return to_datetime(timestamp).day


def seconds_into_day(timestamp: int) -> int:
    return timestamp % SECONDS_PER_DAY


def is_valid_day_of_month(day: int) -> bool:
    return MIN_DAY_OF_MONTH <= day <= MAX_DAY_OF_MONTH


def occurrence_dates(
    start_date: int,
    end_date: int,
    day: int,
    time_of_day: int = 0
) -> List[int]:
    """All timestamps on ``day`` of each month that fall in [start_date, end_date].

    Walks calendar months starting from the month of ``start_date``.

    Args:
        start_date: First instant an occurrence may fall on
        end_date: Last instant an occurrence may fall on
        day: Day of month, 1-28
        time_of_day: Seconds after midnight UTC for each occurrence

    Returns:
        Occurrence timestamps in chronological order

    Raises:
        InvalidRecurrenceError: If ``day`` is outside 1-28
    """
    if not is_valid_day_of_month(day):
        raise InvalidRecurrenceError(
            f"Day of month must be between {MIN_DAY_OF_MONTH} and {MAX_DAY_OF_MONTH}", day
        )
    if end_date < start_date:
        return []

    start = to_datetime(start_date)
    year, month = start.year, start.month
    dates = []
    while True:
        candidate = to_timestamp(datetime(year, month, day, tzinfo=timezone.utc)) + time_of_day
        if candidate > end_date:
            break
        if candidate >= start_date:
            dates.append(candidate)
        month += 1
        if month > 12:
            month = 1
            year += 1
    return dates


def build_recurrence_calendar(
    start_date: int,
    end_date: int,
    day: int,
    time_of_day: int = 0
) -> Tuple[int, ...]:
    """Month numbers (1-12) in which a bill on ``day`` falls due within the span.

    Months are listed in occurrence order; the length of the calendar is the
    number of occurrences.
    """
    months = [to_datetime(date).month for date in occurrence_dates(start_date, end_date, day, time_of_day)]
    return tuple(dict.fromkeys(months))


def first_occurrence(
    start_date: int,
    end_date: int,
    day: int,
    not_before: Optional[int] = None,
    time_of_day: int = 0
) -> Optional[int]:
    """Earliest occurrence on ``day`` inside the span and not before ``not_before``."""
    earliest = start_date if not_before is None else max(start_date, not_before)
    dates = occurrence_dates(earliest, end_date, day, time_of_day)
    return dates[0] if dates else None


def advance_occurrence(
    due_date: int,
    end_date: int,
    remaining_occurrences: Optional[int] = None
) -> Tuple[int, bool]:
    """Next state of a recurring bill after its current occurrence is settled.

    Args:
        due_date: Due date of the occurrence just settled
        end_date: Cycle end; no occurrence may fall after it
        remaining_occurrences: Calendar occurrences still owed after this one,
            or None to decide by date alone

    Returns:
        ``(next_due_date, False)`` while another occurrence is owed,
        otherwise ``(due_date, True)``: the bill is finished and stays paid.
        The next occurrence is 30 days later, capped at ``end_date``.
    """
    if remaining_occurrences is not None and remaining_occurrences <= 0:
        return due_date, True
    next_due = due_date + MONTH_SECONDS
    if next_due <= end_date:
        return next_due, False
    if remaining_occurrences:
        # 30-day drift can carry the last owed occurrence past the cycle end
        return end_date, False
    return due_date, True


def current_month(timestamp: int) -> int:
    """Month bucket (1-12) used for the one-adjustment-per-month rule."""
    return (timestamp // MONTH_SECONDS) % 12 + 1
