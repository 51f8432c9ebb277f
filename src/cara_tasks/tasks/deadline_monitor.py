# src/cara_tasks/tasks/deadline_monitor.py

from __future__ import annotations

"""
Deadline monitor.

A small polling loop that:
- finds open tasks whose deadline falls inside the reminder window,
- asks the estimator for a completion strategy based on similar completed tasks,
- reports the strategy through an injected callback,
- latches reminder_sent=True so each task is reminded at most once.

On inference failure the latch stays unset and the next tick tries again.
"""

import asyncio
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

from ..core.state import AppState
from ..llm.retry import InferenceFailure
from .task_models import Task, TaskStatus

logger = logging.getLogger(__name__)

REMINDER_WINDOW_HOURS = 48.0

StrategyCallback = Callable[[Task, str], None]


def needs_reminder(task: Task, now: datetime, window_hours: float = REMINDER_WINDOW_HOURS) -> bool:
    if task.deadline is None or task.reminder_sent or task.status == TaskStatus.COMPLETED:
        return False
    remaining = task.deadline - now
    return timedelta(0) < remaining <= timedelta(hours=window_hours)


def similar_tasks(task: Task, tasks: Sequence[Task]) -> list[Task]:
    """Completed tasks at the same dealership, or any completed task with a claim."""
    return [
        t
        for t in tasks
        if t.id != task.id
        and t.status == TaskStatus.COMPLETED
        and (t.dealership == task.dealership or bool(t.insurance_claim))
    ]


async def check_deadlines(
        state: AppState,
        *,
        now: datetime | None = None,
        window_hours: float = REMINDER_WINDOW_HOURS,
        on_strategy: StrategyCallback | None = None,
) -> list[str]:
    """One monitor pass. Returns ids of the tasks reminded in this pass."""
    now = now or datetime.now(UTC)
    tasks = state.collection.all()
    reminded: list[str] = []

    for task in tasks:
        if not needs_reminder(task, now, window_hours):
            continue

        try:
            strategy = await state.estimator.generate_completion_strategy(task, similar_tasks(task, tasks))
        except InferenceFailure as e:
            logger.warning("Completion strategy failed task=%s: %s", task.id, e)
            continue

        state.strategies[task.id] = strategy
        if on_strategy is not None:
            try:
                on_strategy(task, strategy)
            except Exception:
                logger.exception("on_strategy callback failed task=%s", task.id)

        try:
            await state.store.update_task(task.id, {"reminder_sent": True})
        except Exception:
            logger.exception("reminder_sent latch write failed task=%s", task.id)
            continue

        state.collection.apply_local(task.id, reminder_sent=True)
        reminded.append(task.id)
        logger.info("Deadline reminder sent task=%s deadline=%s", task.id, task.deadline)

    return reminded


async def run_deadline_monitor(
        state: AppState,
        *,
        interval_seconds: float = 300.0,
        window_hours: float = REMINDER_WINDOW_HOURS,
        on_strategy: StrategyCallback | None = None,
) -> None:
    """
    Poll every interval_seconds. To stop the monitor, cancel the coroutine/task.
    """
    sleep_s = max(0.5, float(interval_seconds))

    while True:
        try:
            await check_deadlines(state, window_hours=window_hours, on_strategy=on_strategy)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Deadline check failed")

        await asyncio.sleep(sleep_s)
