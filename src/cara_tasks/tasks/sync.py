# src/cara_tasks/tasks/sync.py

"""
Live synchronization of the local task collection with the remote store.

State machine:
    DISCONNECTED -> SUBSCRIBED -> (RECEIVING | ERROR) -> UNSUBSCRIBED

Key invariants:
- every snapshot fully replaces the local collection (no incremental patching),
  published sorted by priority descending (absent = 0),
- snapshots are applied in delivery order, one at a time (the handler is synchronous),
- unsaved local edits (pending_overlay) are re-applied on top of every snapshot, so a
  snapshot never rolls back an edit that is still saving or failed to save,
- tasks without a priority are back-filled in the background; the write re-enters as a
  new snapshot. Re-estimating a task that got a priority meanwhile is accepted,
- a subscription error publishes an empty collection and never raises out of the callback,
- stop() is idempotent; nothing is published after it returns.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from ..core.ports import RemoteTaskStore, Subscription
from ..core.state import TaskCollection
from ..llm.retry import InferenceFailure
from .filters import sort_tasks
from .priority import PriorityEstimator
from .task_models import DEFAULT_PRIORITY, SortKey, Task

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    DISCONNECTED = "disconnected"
    SUBSCRIBED = "subscribed"
    RECEIVING = "receiving"
    ERROR = "error"
    UNSUBSCRIBED = "unsubscribed"


class SyncReconciler:
    def __init__(
        self,
        store: RemoteTaskStore,
        collection: TaskCollection,
        estimator: PriorityEstimator,
        *,
        backfill: bool = True,
        pending_overlay: Callable[[], dict[tuple[str, str], Any]] | None = None,
    ) -> None:
        self._store = store
        self._collection = collection
        self._estimator = estimator
        self._backfill_enabled = backfill
        self._pending_overlay = pending_overlay

        self.state = SyncState.DISCONNECTED
        self.owner_id: str | None = None
        self.last_error: Exception | None = None
        self.snapshots_applied = 0

        self._subscription: Subscription | None = None
        self._backfills: dict[str, asyncio.Task[None]] = {}

    def start(self, owner_id: str) -> None:
        """Subscribe for owner_id. Switching owners tears down the previous subscription first."""
        if not owner_id:
            raise ValueError("owner_id is required")

        if self._subscription is not None:
            if self.owner_id == owner_id and self._subscription.active:
                return
            self._teardown()

        self.owner_id = owner_id
        self.last_error = None
        self._subscription = self._store.subscribe(owner_id, self._on_snapshot, self._on_error)
        self.state = SyncState.SUBSCRIBED
        logger.info("Sync subscribed owner=%s", owner_id)

    def stop(self) -> None:
        if self.state == SyncState.UNSUBSCRIBED:
            return
        self._teardown()
        self.state = SyncState.UNSUBSCRIBED
        logger.info("Sync unsubscribed owner=%s", self.owner_id)

    async def wait_backfills(self) -> None:
        """Wait for in-flight priority back-fills (used by shutdown and tests)."""
        pending = list(self._backfills.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _teardown(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        for t in self._backfills.values():
            t.cancel()
        self._backfills.clear()

    def _is_live(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def _with_local_edits(self, tasks: list[Task]) -> list[Task]:
        overlay = self._pending_overlay() if self._pending_overlay is not None else {}
        if not overlay:
            return tasks

        by_task: dict[str, dict[str, Any]] = {}
        for (task_id, field), value in overlay.items():
            by_task.setdefault(task_id, {})[field] = value

        out: list[Task] = []
        for t in tasks:
            changes = by_task.get(t.id)
            out.append(dataclasses.replace(t, **changes) if changes else t)
        return out

    def _on_snapshot(self, tasks: list[Task]) -> None:
        if not self._is_live():
            return

        self._collection.replace_all(sort_tasks(self._with_local_edits(tasks), SortKey.PRIORITY))
        self.state = SyncState.RECEIVING
        self.snapshots_applied += 1
        logger.debug("Snapshot applied: %d tasks", len(tasks))

        if self._backfill_enabled:
            for task in tasks:
                if task.ai_priority is None:
                    self._schedule_backfill(task)

    def _on_error(self, error: Exception) -> None:
        if not self._is_live():
            return
        self.state = SyncState.ERROR
        self.last_error = error
        logger.error("Task subscription error owner=%s: %s", self.owner_id, error)
        self._collection.replace_all([])

    def _schedule_backfill(self, task: Task) -> None:
        if task.id in self._backfills:
            return
        job = asyncio.get_running_loop().create_task(self._backfill(task))
        self._backfills[task.id] = job
        job.add_done_callback(lambda _t, task_id=task.id: self._backfills.pop(task_id, None))

    async def _backfill(self, task: Task) -> None:
        try:
            estimate = await self._estimator.estimate_task(task)
            priority = estimate.priority
        except InferenceFailure as e:
            logger.warning("Priority back-fill failed task=%s: %s; using default", task.id, e)
            priority = DEFAULT_PRIORITY

        if not self._is_live():
            return

        try:
            await self._store.update_task(task.id, {"ai_priority": priority})
            logger.debug("Priority back-filled task=%s priority=%s", task.id, priority)
        except Exception:
            logger.exception("Priority back-fill write failed task=%s", task.id)
