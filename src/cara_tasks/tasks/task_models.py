# src/cara_tasks/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

MIN_PRIORITY = 1
MAX_PRIORITY = 10
DEFAULT_PRIORITY = 5

HIGH_PRIORITY = 8
MEDIUM_PRIORITY = 5


def clamp_priority(value: Any, default: int = DEFAULT_PRIORITY) -> int:
    """Coerce anything priority-like into [1, 10]; unusable input -> default."""
    try:
        n = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(MIN_PRIORITY, min(MAX_PRIORITY, n))


class TaskStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


class Frequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class SortKey(StrEnum):
    PRIORITY = "priority"
    DATE = "date"
    STATUS = "status"


class InsuranceFilter(StrEnum):
    ANY = "any"
    REQUIRED = "required"
    ABSENT = "absent"


STATUS_ALL = "all"


@dataclass(slots=True)
class RecurrenceRule:
    """
    Declarative schedule.

    days_of_week uses 0=Sunday .. 6=Saturday and only matters for weekly rules;
    day_of_month only matters for monthly rules.
    """

    frequency: Frequency
    interval: int = 1
    days_of_week: list[int] = field(default_factory=list)
    day_of_month: int | None = None
    next_due: datetime | None = None
    end_date: datetime | None = None

    def __post_init__(self) -> None:
        self.frequency = Frequency(self.frequency)
        if self.interval < 1:
            raise ValueError("interval must be a positive integer")
        days = sorted({int(d) for d in self.days_of_week})
        if any(d < 0 or d > 6 for d in days):
            raise ValueError("days_of_week must be within 0..6")
        self.days_of_week = days
        if self.day_of_month is not None and not 1 <= self.day_of_month <= 31:
            raise ValueError("day_of_month must be within 1..31")

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequency": self.frequency.value,
            "interval": self.interval,
            "days_of_week": list(self.days_of_week),
            "day_of_month": self.day_of_month,
            "next_due": self.next_due.isoformat() if self.next_due else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> RecurrenceRule:
        def _dt(v: Any) -> datetime | None:
            return datetime.fromisoformat(v) if isinstance(v, str) and v else None

        return cls(
            frequency=Frequency(raw.get("frequency", "daily")),
            interval=int(raw.get("interval") or 1),
            days_of_week=list(raw.get("days_of_week") or []),
            day_of_month=raw.get("day_of_month"),
            next_due=_dt(raw.get("next_due")),
            end_date=_dt(raw.get("end_date")),
        )


@dataclass(slots=True)
class Task:
    id: str
    title: str
    description: str
    status: TaskStatus
    assigned_to: str
    order: int
    created_at: datetime
    updated_at: datetime

    dealership: str | None = None
    insurance_claim: str | None = None
    deadline: datetime | None = None
    ai_priority: int | None = None
    ai_suggestion: str | None = None
    reminder_sent: bool = False
    recurrence: RecurrenceRule | None = None

    @property
    def effective_priority(self) -> int:
        """Priority used for sorting/filtering: absent counts as 0."""
        return self.ai_priority or 0


@dataclass(slots=True)
class TaskDraft:
    """Task data before the store assigns an id (form input or chat extraction)."""

    title: str
    description: str = ""
    dealership: str | None = None
    insurance_claim: str | None = None
    ai_priority: int = DEFAULT_PRIORITY
    deadline: datetime | None = None
    recurrence: RecurrenceRule | None = None


@dataclass(slots=True, frozen=True)
class FilterSpec:
    status: str = STATUS_ALL
    search: str = ""
    dealership: str = ""
    insurance: InsuranceFilter = InsuranceFilter.ANY
    min_priority: int = 0


# Fields a caller may change through TaskStore.update_task.
MUTABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "status",
        "order",
        "dealership",
        "insurance_claim",
        "deadline",
        "ai_priority",
        "ai_suggestion",
        "reminder_sent",
        "recurrence",
    }
)
