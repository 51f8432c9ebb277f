# tests/test_recurrence.py

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from cara_tasks.tasks.recurrence import next_due_date, next_occurrence, weekday_index
from cara_tasks.tasks.task_models import Frequency, RecurrenceRule

# 2025-01-14 is a Tuesday.
TUESDAY = datetime(2025, 1, 14, 9, 30, tzinfo=UTC)


def test_weekday_index_starts_on_sunday() -> None:
    assert weekday_index(datetime(2025, 1, 12)) == 0  # Sunday
    assert weekday_index(TUESDAY) == 2
    assert weekday_index(datetime(2025, 1, 18)) == 6  # Saturday


def test_daily_adds_interval_days() -> None:
    rule = RecurrenceRule(Frequency.DAILY, interval=3)
    assert next_due_date(rule, TUESDAY) == datetime(2025, 1, 17, 9, 30, tzinfo=UTC)


@pytest.mark.parametrize(
    ("from_date", "expected"),
    [
        (TUESDAY, datetime(2025, 1, 15, 9, 30, tzinfo=UTC)),  # Tue -> Wed
        (datetime(2025, 1, 15, 9, 30, tzinfo=UTC), datetime(2025, 1, 20, 9, 30, tzinfo=UTC)),  # Wed -> Mon
        (datetime(2025, 1, 16, 9, 30, tzinfo=UTC), datetime(2025, 1, 20, 9, 30, tzinfo=UTC)),  # Thu -> Mon
        (datetime(2025, 1, 18, 9, 30, tzinfo=UTC), datetime(2025, 1, 20, 9, 30, tzinfo=UTC)),  # Sat -> Mon
        (datetime(2025, 1, 19, 9, 30, tzinfo=UTC), datetime(2025, 1, 20, 9, 30, tzinfo=UTC)),  # Sun -> Mon
    ],
)
def test_weekly_with_days_jumps_to_next_selected_weekday(from_date: datetime, expected: datetime) -> None:
    rule = RecurrenceRule(Frequency.WEEKLY, days_of_week=[3, 1])
    assert next_due_date(rule, from_date) == expected


def test_weekly_with_days_ignores_interval() -> None:
    rule = RecurrenceRule(Frequency.WEEKLY, interval=3, days_of_week=[1, 3])
    assert next_due_date(rule, TUESDAY) == datetime(2025, 1, 15, 9, 30, tzinfo=UTC)


def test_weekly_without_days_adds_whole_weeks() -> None:
    rule = RecurrenceRule(Frequency.WEEKLY, interval=2)
    assert next_due_date(rule, TUESDAY) == datetime(2025, 1, 28, 9, 30, tzinfo=UTC)


def test_monthly_clamps_to_last_day_of_month() -> None:
    rule = RecurrenceRule(Frequency.MONTHLY, day_of_month=31)

    assert next_due_date(rule, datetime(2025, 1, 15, tzinfo=UTC)) == datetime(2025, 2, 28, tzinfo=UTC)
    assert next_due_date(rule, datetime(2024, 1, 15, tzinfo=UTC)) == datetime(2024, 2, 29, tzinfo=UTC)


def test_monthly_rolls_over_the_year() -> None:
    rule = RecurrenceRule(Frequency.MONTHLY, interval=1, day_of_month=10)
    assert next_due_date(rule, datetime(2024, 12, 20, tzinfo=UTC)) == datetime(2025, 1, 10, tzinfo=UTC)


def test_monthly_without_day_keeps_day_of_from_date() -> None:
    rule = RecurrenceRule(Frequency.MONTHLY, interval=2)
    assert next_due_date(rule, datetime(2025, 3, 5, tzinfo=UTC)) == datetime(2025, 5, 5, tzinfo=UTC)


def test_next_due_date_ignores_end_date_but_next_occurrence_honors_it() -> None:
    rule = RecurrenceRule(
        Frequency.DAILY,
        interval=7,
        end_date=datetime(2025, 1, 20, tzinfo=UTC),
    )

    assert next_due_date(rule, TUESDAY) == datetime(2025, 1, 21, 9, 30, tzinfo=UTC)
    assert next_occurrence(rule, TUESDAY) is None
    assert next_occurrence(rule, datetime(2025, 1, 10, tzinfo=UTC)) == datetime(2025, 1, 17, tzinfo=UTC)


def test_result_is_deterministic_and_after_from_date() -> None:
    rule = RecurrenceRule(Frequency.WEEKLY, days_of_week=[0, 2, 4])
    first = next_due_date(rule, TUESDAY)
    assert first == next_due_date(rule, TUESDAY)
    assert first > TUESDAY


@pytest.mark.parametrize(
    "kwargs",
    [
        {"interval": 0},
        {"days_of_week": [7]},
        {"day_of_month": 32},
    ],
)
def test_rule_validation(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        RecurrenceRule(Frequency.WEEKLY, **kwargs)


def test_rule_dict_round_trip_keeps_dates() -> None:
    rule = RecurrenceRule(
        Frequency.MONTHLY,
        interval=1,
        day_of_month=31,
        next_due=datetime(2025, 2, 28, tzinfo=UTC),
        end_date=datetime(2025, 12, 31, tzinfo=UTC),
    )
    assert RecurrenceRule.from_dict(rule.to_dict()) == rule
