"""
Unit tests for recurrence scheduling.

Tests calendar construction, occurrence advance and the month bucket.
"""

from datetime import datetime, timezone

import pytest

from bill_guard.core.errors import InvalidRecurrenceError
from bill_guard.core.recurrence import (
    MONTH_SECONDS,
    advance_occurrence,
    build_recurrence_calendar,
    current_month,
    day_index,
    day_of_month,
    first_occurrence,
    occurrence_dates,
    same_day,
)

NOON = 12 * 3600


def ts(year, month, day, hour=12, minute=0):
    return int(datetime(year, month, day, hour, minute, tzinfo=timezone.utc).timestamp())


class TestDayHelpers:

    def test_same_day_ignores_time_of_day(self):
        assert same_day(ts(2026, 11, 15, 0, 0), ts(2026, 11, 15, 23, 59))
        assert not same_day(ts(2026, 11, 15, 23, 59), ts(2026, 11, 16, 0, 0))

    def test_day_index_counts_utc_days(self):
        assert day_index(0) == 0
        assert day_index(86_399) == 0
        assert day_index(86_400) == 1

    def test_day_of_month(self):
        assert day_of_month(ts(2026, 2, 28)) == 28


class TestCalendarConstruction:
    """Test which months a fixed day of month falls in."""

    def test_three_month_span(self):
        calendar = build_recurrence_calendar(ts(2026, 10, 1), ts(2026, 12, 30), 15, NOON)
        assert calendar == (10, 11, 12)

    def test_calendar_crosses_year_boundary(self):
        calendar = build_recurrence_calendar(ts(2026, 11, 15), ts(2027, 2, 6), 15, NOON)
        assert calendar == (11, 12, 1)

    def test_day_before_start_in_first_month_is_skipped(self):
        calendar = build_recurrence_calendar(ts(2026, 10, 20), ts(2027, 1, 18), 10, NOON)
        assert calendar == (11, 12, 1)

    def test_end_date_is_inclusive(self):
        dates = occurrence_dates(ts(2026, 10, 1), ts(2026, 12, 15), 15, NOON)
        assert dates == [ts(2026, 10, 15), ts(2026, 11, 15), ts(2026, 12, 15)]

    def test_twelve_month_cycle_has_no_repeated_months(self):
        start = ts(2026, 1, 5)
        calendar = build_recurrence_calendar(start, start + 12 * MONTH_SECONDS, 10, NOON)
        assert calendar == tuple(range(1, 13))

    def test_day_of_month_must_be_1_to_28(self):
        with pytest.raises(InvalidRecurrenceError):
            build_recurrence_calendar(ts(2026, 1, 1), ts(2026, 6, 1), 29)
        with pytest.raises(InvalidRecurrenceError):
            build_recurrence_calendar(ts(2026, 1, 1), ts(2026, 6, 1), 0)

    def test_empty_span(self):
        assert build_recurrence_calendar(ts(2026, 6, 1), ts(2026, 1, 1), 10) == ()

    def test_first_occurrence_respects_not_before(self):
        first = first_occurrence(
            ts(2026, 10, 1), ts(2026, 12, 30), 5, not_before=ts(2026, 10, 8), time_of_day=NOON
        )
        assert first == ts(2026, 11, 5)

    def test_first_occurrence_none_when_nothing_fits(self):
        assert first_occurrence(ts(2026, 10, 1), ts(2026, 10, 20), 25, time_of_day=NOON) is None


class TestOccurrenceAdvance:
    """Test the fixed 30-day advance after a payment."""

    def test_advance_within_cycle(self):
        next_due, is_paid = advance_occurrence(ts(2026, 11, 15), ts(2027, 2, 6))
        assert next_due == ts(2026, 12, 15)
        assert is_paid is False

    def test_advance_drifts_after_31_day_month(self):
        next_due, is_paid = advance_occurrence(ts(2026, 12, 15), ts(2027, 2, 6))
        assert next_due == ts(2027, 1, 14)
        assert is_paid is False

    def test_advance_past_end_is_terminal(self):
        due = ts(2027, 1, 14)
        next_due, is_paid = advance_occurrence(due, ts(2027, 2, 6))
        assert next_due == due
        assert is_paid is True

    def test_advance_landing_on_end_date_still_recurs(self):
        due = ts(2026, 11, 15)
        next_due, is_paid = advance_occurrence(due, due + MONTH_SECONDS)
        assert next_due == due + MONTH_SECONDS
        assert is_paid is False

    def test_no_remaining_occurrences_is_terminal_even_before_end(self):
        due = ts(2026, 11, 15)
        next_due, is_paid = advance_occurrence(due, ts(2027, 6, 1), remaining_occurrences=0)
        assert next_due == due
        assert is_paid is True

    def test_owed_occurrence_past_end_is_capped_at_end(self):
        # Feb 10 + 30 days is Mar 12, but a Mar 10 occurrence is still owed
        end = ts(2026, 3, 11)
        next_due, is_paid = advance_occurrence(ts(2026, 2, 10), end, remaining_occurrences=1)
        assert next_due == end
        assert is_paid is False

    def test_remaining_count_does_not_change_in_span_step(self):
        next_due, is_paid = advance_occurrence(ts(2026, 11, 15), ts(2027, 2, 6), remaining_occurrences=2)
        assert next_due == ts(2026, 12, 15)
        assert is_paid is False


class TestCurrentMonth:

    def test_month_bucket_formula(self):
        assert current_month(0) == 1
        assert current_month(MONTH_SECONDS - 1) == 1
        assert current_month(MONTH_SECONDS) == 2
        assert current_month(11 * MONTH_SECONDS) == 12
        assert current_month(12 * MONTH_SECONDS) == 1

    def test_bucket_always_in_range(self):
        for timestamp in range(0, 400 * 86_400, 7 * 86_400):
            assert 1 <= current_month(timestamp) <= 12
