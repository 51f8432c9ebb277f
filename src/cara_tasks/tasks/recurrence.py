# src/cara_tasks/tasks/recurrence.py

"""
Next-occurrence computation for recurring tasks.

Pure and deterministic: the time of day and tzinfo of from_date are preserved.

Weekday indices follow the 0=Sunday .. 6=Saturday convention used by RecurrenceRule.
A weekly rule with selected weekdays jumps to the next selected weekday and does not
apply the interval; a weekly rule without weekdays advances 7*interval days.

Monthly overflow policy: the day of month is clamped to the last day of the target
month (Jan 15 with day_of_month=31 -> Feb 28, or Feb 29 in a leap year).

end_date is deliberately not consulted here; see next_occurrence() for the bounded form.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from .task_models import Frequency, RecurrenceRule


def weekday_index(d: datetime) -> int:
    """0=Sunday .. 6=Saturday."""
    return (d.weekday() + 1) % 7


def _add_months(d: datetime, months: int, day: int) -> datetime:
    month0 = d.month - 1 + months
    year = d.year + month0 // 12
    month = month0 % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return d.replace(year=year, month=month, day=min(day, last_day))


def next_due_date(rule: RecurrenceRule, from_date: datetime) -> datetime:
    if rule.frequency == Frequency.DAILY:
        return from_date + timedelta(days=rule.interval)

    if rule.frequency == Frequency.WEEKLY:
        if not rule.days_of_week:
            return from_date + timedelta(days=7 * rule.interval)

        current = weekday_index(from_date)
        later = [d for d in rule.days_of_week if d > current]
        if later:
            delta = later[0] - current
        else:
            delta = 7 - current + rule.days_of_week[0]
        return from_date + timedelta(days=delta)

    day = rule.day_of_month if rule.day_of_month is not None else from_date.day
    return _add_months(from_date, rule.interval, day)


def next_occurrence(rule: RecurrenceRule, from_date: datetime) -> datetime | None:
    """next_due_date() bounded by end_date (inclusive); None once the series is over."""
    nxt = next_due_date(rule, from_date)
    if rule.end_date is not None and nxt > rule.end_date:
        return None
    return nxt
