"""
Unit tests for keeper cron schedules.
"""

from datetime import datetime, timezone

import pytest

from bill_guard.keeper.schedule import CronSpec, matches_cron, next_fire_time, parse_cron


def at(year, month, day, hour=0, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


class TestParseCron:
    """Test cron expression parsing."""

    def test_daily_at_noon(self):
        spec = parse_cron("0 12 * * *")

        assert spec.minutes == frozenset({0})
        assert spec.hours == frozenset({12})
        assert spec.days_of_month == frozenset(range(1, 32))
        assert spec.days_of_week == frozenset(range(7))

    def test_ranges_steps_and_lists(self):
        spec = parse_cron("*/15 9-17/4 1,15 1-3 1-5")

        assert spec.minutes == frozenset({0, 15, 30, 45})
        assert spec.hours == frozenset({9, 13, 17})
        assert spec.days_of_month == frozenset({1, 15})
        assert spec.months == frozenset({1, 2, 3})
        assert spec.days_of_week == frozenset({1, 2, 3, 4, 5})

    def test_start_with_step_runs_to_field_max(self):
        assert parse_cron("50/5 * * * *").minutes == frozenset({50, 55})

    def test_default_spec_matches_everything(self):
        assert matches_cron(CronSpec(), at(2026, 10, 18, 3, 17))

    @pytest.mark.parametrize("expression", [
        "0 12 * *",
        "0 12 * * * *",
        "60 12 * * *",
        "0 24 * * *",
        "0 12 0 * *",
        "0 12 * 13 *",
        "0 12 * * 7",
        "0 12-6 * * *",
        "*/0 * * * *",
        "0,,5 * * * *",
        "noon * * * *",
    ])
    def test_invalid_expressions(self, expression):
        with pytest.raises(ValueError):
            parse_cron(expression)


class TestMatchesCron:
    """Test matching moments against a schedule."""

    def test_weekday_uses_sunday_zero(self):
        spec = parse_cron("0 12 * * 0")

        # 2026-10-18 is a Sunday
        assert matches_cron(spec, at(2026, 10, 18, 12, 0))
        assert not matches_cron(spec, at(2026, 10, 19, 12, 0))

    def test_minute_must_match(self):
        spec = parse_cron("0 12 * * *")

        assert not matches_cron(spec, at(2026, 10, 18, 12, 1))


class TestNextFireTime:
    """Test finding the next scheduled run."""

    def test_later_the_same_day(self):
        spec = parse_cron("0 12 * * *")
        assert next_fire_time(spec, at(2026, 10, 18, 9, 30)) == at(2026, 10, 18, 12, 0)

    def test_strictly_after(self):
        spec = parse_cron("0 12 * * *")
        assert next_fire_time(spec, at(2026, 10, 18, 12, 0)) == at(2026, 10, 19, 12, 0)

    def test_seconds_are_dropped(self):
        spec = parse_cron("* * * * *")
        moment = datetime(2026, 10, 18, 9, 30, 45, tzinfo=timezone.utc)
        assert next_fire_time(spec, moment) == at(2026, 10, 18, 9, 31)

    def test_rolls_over_year_end(self):
        spec = parse_cron("0 0 1 1 *")
        assert next_fire_time(spec, at(2026, 10, 18)) == at(2027, 1, 1)

    def test_impossible_schedule(self):
        spec = parse_cron("0 0 31 2 *")

        with pytest.raises(ValueError):
            next_fire_time(spec, at(2026, 10, 18))
