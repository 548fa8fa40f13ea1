"""
Cron schedule evaluation for the keeper.

Pure functions: times come from the caller, nothing here reads the clock.
Expressions use the five standard fields
``minute hour day_of_month month day_of_week`` and are evaluated in UTC.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import FrozenSet, Set


@dataclass(frozen=True)
class CronSpec:
    """Parsed cron expression; each field is the set of matching values."""
    minutes: FrozenSet[int] = field(default_factory=lambda: frozenset(range(60)))
    hours: FrozenSet[int] = field(default_factory=lambda: frozenset(range(24)))
    days_of_month: FrozenSet[int] = field(default_factory=lambda: frozenset(range(1, 32)))
    months: FrozenSet[int] = field(default_factory=lambda: frozenset(range(1, 13)))
    days_of_week: FrozenSet[int] = field(default_factory=lambda: frozenset(range(7)))


def _parse_field(text: str, min_val: int, max_val: int) -> FrozenSet[int]:
    """Parse one cron field.

    Supports ``*``, single values, ranges (``1-5``), steps (``*/15``,
    ``1-10/2``) and comma-separated lists of those.

    Raises:
        ValueError: If the field is malformed or a value is out of range
    """
    values: Set[int] = set()

    for part in text.split(","):
        part = part.strip()
        if not part:
            raise ValueError(f"Empty cron field element in '{text}'")

        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            step = int(step_text)
            if step <= 0:
                raise ValueError(f"Step must be positive: {step}")

        if part == "*":
            start, end = min_val, max_val
        elif "-" in part:
            start_text, end_text = part.split("-", 1)
            start, end = int(start_text), int(end_text)
            if start > end:
                raise ValueError(f"Range start > end: {start}-{end}")
        else:
            start = int(part)
            end = max_val if step != 1 else start

        if start < min_val or end > max_val:
            raise ValueError(f"Value outside range [{min_val}, {max_val}]: '{part}'")

        values.update(range(start, end + 1, step))

    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    """Parse a 5-field cron expression.

    Raises:
        ValueError: If the expression is malformed
    """
    parts = expression.strip().split()
    if len(parts) != 5:
        raise ValueError(
            f"Cron expression must have 5 fields, got {len(parts)}: '{expression}'"
        )

    return CronSpec(
        minutes=_parse_field(parts[0], 0, 59),
        hours=_parse_field(parts[1], 0, 23),
        days_of_month=_parse_field(parts[2], 1, 31),
        months=_parse_field(parts[3], 1, 12),
        days_of_week=_parse_field(parts[4], 0, 6),
    )


def matches_cron(spec: CronSpec, moment: datetime) -> bool:
    """Check whether a moment falls on a minute matched by the spec.

    Cron counts weekdays from Sunday = 0; ``datetime.weekday()`` from Monday = 0.
    """
    cron_weekday = (moment.weekday() + 1) % 7
    return (
        moment.minute in spec.minutes
        and moment.hour in spec.hours
        and moment.day in spec.days_of_month
        and moment.month in spec.months
        and cron_weekday in spec.days_of_week
    )


def next_fire_time(spec: CronSpec, after: datetime) -> datetime:
    """First matching minute strictly after ``after``.

    Scans minute by minute for up to 366 days.

    Raises:
        ValueError: If nothing matches within 366 days
    """
    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    for _ in range(366 * 24 * 60):
        if matches_cron(spec, candidate):
            return candidate
        candidate += timedelta(minutes=1)

    raise ValueError(f"No cron match found within 366 days after {after}")
