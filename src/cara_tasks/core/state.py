# src/cara_tasks/core/state.py

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..tasks.task_models import FilterSpec, SortKey, Task
from .ports import ChatMessage, RemoteTaskStore

if TYPE_CHECKING:
    from ..tasks.debounce import DebouncedWriter
    from ..tasks.priority import PriorityEstimator
    from ..tasks.sync import SyncReconciler

logger = logging.getLogger(__name__)

CollectionListener = Callable[[list[Task]], None]


class TaskCollection:
    """
    The single local task list.

    Components get a handle to it instead of reaching into a global. Every mutation
    publishes the new list to registered listeners (the view layer).
    """

    def __init__(self, tasks: Iterable[Task] = ()) -> None:
        self._tasks: list[Task] = list(tasks)
        self._listeners: list[CollectionListener] = []

    def __len__(self) -> int:
        return len(self._tasks)

    def all(self) -> list[Task]:
        return list(self._tasks)

    def get(self, task_id: str) -> Task | None:
        for t in self._tasks:
            if t.id == task_id:
                return t
        return None

    def replace_all(self, tasks: Iterable[Task]) -> None:
        self._tasks = list(tasks)
        self._publish()

    def apply_local(self, task_id: str, **changes: Any) -> Task | None:
        """Field-level last-write-wins update of one task. Unknown ids are ignored."""
        for i, t in enumerate(self._tasks):
            if t.id == task_id:
                updated = dataclasses.replace(t, **changes)
                self._tasks[i] = updated
                self._publish()
                return updated
        return None

    def remove_local(self, task_id: str) -> None:
        before = len(self._tasks)
        self._tasks = [t for t in self._tasks if t.id != task_id]
        if len(self._tasks) != before:
            self._publish()

    def listen(self, callback: CollectionListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def _unlisten() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unlisten

    def _publish(self) -> None:
        snapshot = list(self._tasks)
        for cb in list(self._listeners):
            try:
                cb(snapshot)
            except Exception:
                logger.exception("TaskCollection listener failed")


@dataclass
class AppState:
    settings: Any
    owner_id: str

    store: RemoteTaskStore
    estimator: PriorityEstimator
    collection: TaskCollection
    reconciler: SyncReconciler
    writer: DebouncedWriter

    filter_spec: FilterSpec = field(default_factory=FilterSpec)
    sort_key: SortKey = SortKey.PRIORITY

    chat_history: list[ChatMessage] = field(default_factory=list)
    # task_id -> completion strategy produced by the deadline monitor
    strategies: dict[str, str] = field(default_factory=dict)
