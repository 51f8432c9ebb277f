# src/cara_tasks/tasks/filters.py

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .task_models import (
    HIGH_PRIORITY,
    MEDIUM_PRIORITY,
    STATUS_ALL,
    FilterSpec,
    InsuranceFilter,
    SortKey,
    Task,
    TaskStatus,
)


def matches(task: Task, spec: FilterSpec) -> bool:
    if spec.status != STATUS_ALL and task.status != spec.status:
        return False

    if spec.search:
        needle = spec.search.lower()
        if needle not in task.title.lower() and needle not in (task.description or "").lower():
            return False

    if spec.dealership and spec.dealership.lower() not in (task.dealership or "").lower():
        return False

    if spec.insurance == InsuranceFilter.REQUIRED and not task.insurance_claim:
        return False
    if spec.insurance == InsuranceFilter.ABSENT and task.insurance_claim:
        return False

    return task.effective_priority >= spec.min_priority


def sort_tasks(tasks: Sequence[Task], sort_key: SortKey = SortKey.PRIORITY) -> list[Task]:
    """Stable sort: equal keys keep their relative order."""
    if sort_key == SortKey.DATE:
        return sorted(tasks, key=lambda t: t.updated_at, reverse=True)
    if sort_key == SortKey.STATUS:
        return sorted(tasks, key=lambda t: t.status.value)
    return sorted(tasks, key=lambda t: t.effective_priority, reverse=True)


def apply(
    tasks: Sequence[Task],
    spec: FilterSpec | None = None,
    sort_key: SortKey = SortKey.PRIORITY,
) -> list[Task]:
    """Filter + sort into a new list; the input is never mutated."""
    spec = spec or FilterSpec()
    return sort_tasks([t for t in tasks if matches(t, spec)], sort_key)


@dataclass(slots=True, frozen=True)
class TaskStats:
    total: int
    pending: int
    in_progress: int
    completed: int
    completion_rate: int
    pending_rate: int
    in_progress_rate: int
    high_priority: int
    medium_priority: int
    low_priority: int


def _rate(part: int, total: int) -> int:
    # half-up, not banker's rounding
    return int(part * 100 / total + 0.5) if total else 0


def compute_stats(tasks: Sequence[Task]) -> TaskStats:
    total = len(tasks)
    pending = sum(1 for t in tasks if t.status == TaskStatus.PENDING)
    in_progress = sum(1 for t in tasks if t.status == TaskStatus.IN_PROGRESS)
    completed = sum(1 for t in tasks if t.status == TaskStatus.COMPLETED)

    # Tasks without a priority are not bucketed.
    prios = [t.ai_priority for t in tasks if t.ai_priority]
    return TaskStats(
        total=total,
        pending=pending,
        in_progress=in_progress,
        completed=completed,
        completion_rate=_rate(completed, total),
        pending_rate=_rate(pending, total),
        in_progress_rate=_rate(in_progress, total),
        high_priority=sum(1 for p in prios if p >= HIGH_PRIORITY),
        medium_priority=sum(1 for p in prios if MEDIUM_PRIORITY <= p < HIGH_PRIORITY),
        low_priority=sum(1 for p in prios if p < MEDIUM_PRIORITY),
    )
