# src/cara_tasks/tasks/ordering.py

"""
Manual (drag-and-drop) ordering.

Shift-insert semantics: the moved task takes target_order and every other task with
order >= target_order moves down by one. The moved task's old slot is not compacted,
so gaps are expected and duplicate order values (e.g. inherited from concurrent writers)
are tolerated: ties keep their previous relative position because the sort is stable.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from ..core.state import TaskCollection
from .task_models import Task

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OrderChange:
    task_id: str
    order: int


def shift_insert(
    tasks: Sequence[Task], moving_task_id: str, target_order: int
) -> tuple[list[Task], list[OrderChange]]:
    """Return (tasks sorted by order, changed orders). Unknown id -> input unchanged."""
    if not any(t.id == moving_task_id for t in tasks):
        return list(tasks), []

    out: list[Task] = []
    changes: list[OrderChange] = []

    for t in tasks:
        if t.id == moving_task_id:
            new_order = target_order
        elif t.order >= target_order:
            new_order = t.order + 1
        else:
            out.append(t)
            continue

        if new_order != t.order:
            changes.append(OrderChange(t.id, new_order))
            t = dataclasses.replace(t, order=new_order)
        out.append(t)

    out.sort(key=lambda t: t.order)
    return out, changes


class OrderIndex:
    def __init__(self, collection: TaskCollection) -> None:
        self._collection = collection

    def reorder(self, moving_task_id: str, target_order: int) -> list[OrderChange]:
        """Apply a drag-reorder to the local collection; returns the writes to persist."""
        tasks, changes = shift_insert(self._collection.all(), moving_task_id, int(target_order))
        if not changes and self._collection.get(moving_task_id) is None:
            logger.warning("reorder: unknown task id=%s", moving_task_id)
            return []

        self._collection.replace_all(tasks)
        logger.debug(
            "reorder: task=%s -> order=%s (%d orders changed)",
            moving_task_id,
            target_order,
            len(changes),
        )
        return changes
