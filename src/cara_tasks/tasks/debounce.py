# src/cara_tasks/tasks/debounce.py

"""
Trailing-edge debounced writes for free-text edits.

- on_edit() updates the local collection immediately and (re)arms one timer per
  (task_id, field); only the value present when the timer fires is written.
- Writes for one key are serialized, so a superseded write can never land after a
  newer one (last-scheduled-wins).
- Save status per key: edit -> SAVING, write ok -> SAVED, write failed -> ERROR.
  A failed write keeps the local edit; retry() or another edit writes it again.
- Unsaved values (SAVING or ERROR) are exposed through pending_overlay() so the
  sync layer can re-apply them on top of every incoming snapshot.
- Per-key bookkeeping is dropped once a key settles in SAVED; forget() drops
  everything for a deleted task.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from ..core.ports import RemoteTaskStore
from ..core.state import TaskCollection
from .task_models import MUTABLE_FIELDS

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 1.0

EditKey = tuple[str, str]  # (task_id, field)


class SaveStatus(StrEnum):
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


StatusListener = Callable[[str, str, SaveStatus], None]


class DebouncedWriter:
    def __init__(
        self,
        store: RemoteTaskStore,
        collection: TaskCollection,
        *,
        delay_seconds: float = DEBOUNCE_SECONDS,
        on_status: StatusListener | None = None,
    ) -> None:
        self._store = store
        self._collection = collection
        self._delay = max(0.0, float(delay_seconds))
        self._on_status = on_status

        self._timers: dict[EditKey, asyncio.TimerHandle] = {}
        self._pending: dict[EditKey, Any] = {}
        self._seq: dict[EditKey, int] = {}
        self._locks: dict[EditKey, asyncio.Lock] = {}
        self._status: dict[EditKey, SaveStatus] = {}
        self._inflight: set[asyncio.Task[None]] = set()

    def status(self, task_id: str, field: str) -> SaveStatus | None:
        return self._status.get((task_id, field))

    def has_pending(self) -> bool:
        return bool(self._timers) or bool(self._inflight)

    def pending_overlay(self) -> dict[EditKey, Any]:
        """Local values not yet confirmed by the store, keyed by (task_id, field)."""
        return dict(self._pending)

    def forget(self, task_id: str) -> None:
        """Drop timers, unsaved values and status for a task that no longer exists."""
        for key in [k for k in self._timers if k[0] == task_id]:
            self._timers.pop(key).cancel()
        for table in (self._pending, self._seq, self._status):
            for key in [k for k in table if k[0] == task_id]:
                del table[key]
        for key in [k for k, lock in self._locks.items() if k[0] == task_id and not lock.locked()]:
            del self._locks[key]

    def on_edit(self, task_id: str, field: str, value: Any) -> None:
        if field not in MUTABLE_FIELDS:
            raise ValueError(f"field is not editable: {field}")

        self._collection.apply_local(task_id, **{field: value})

        key = (task_id, field)
        self._pending[key] = value
        self._seq[key] = self._seq.get(key, 0) + 1
        self._set_status(key, SaveStatus.SAVING)
        self._arm(key, self._delay)

    def retry(self, task_id: str, field: str) -> bool:
        """Write the latest local value for the key now. False if nothing to retry."""
        key = (task_id, field)
        if key not in self._pending:
            return False
        self._seq[key] = self._seq.get(key, 0) + 1
        self._set_status(key, SaveStatus.SAVING)
        self._arm(key, 0.0)
        return True

    async def flush(self) -> None:
        """Fire every armed timer now and wait for all writes to settle."""
        for key in list(self._timers):
            self._timers.pop(key).cancel()
            self._fire(key)
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def close(self) -> None:
        """Drop armed timers without writing (in-flight writes are left to finish)."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def _arm(self, key: EditKey, delay: float) -> None:
        old = self._timers.pop(key, None)
        if old is not None:
            old.cancel()
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._fire, key)

    def _fire(self, key: EditKey) -> None:
        self._timers.pop(key, None)
        job = asyncio.get_running_loop().create_task(
            self._write(key, self._pending[key], self._seq[key])
        )
        self._inflight.add(job)
        job.add_done_callback(self._inflight.discard)

    async def _write(self, key: EditKey, value: Any, seq: int) -> None:
        task_id, field = key
        lock = self._locks.setdefault(key, asyncio.Lock())

        async with lock:
            try:
                await self._store.update_task(task_id, {field: value})
                ok = True
            except Exception as e:
                logger.error("Debounced write failed task=%s field=%s: %s", task_id, field, e)
                ok = False

        if key not in self._seq:
            # forget() ran while this write was in flight.
            self._locks.pop(key, None)
            return
        if seq != self._seq[key]:
            return

        if not ok:
            self._set_status(key, SaveStatus.ERROR)
            return

        logger.debug("Debounced write ok task=%s field=%s seq=%d", task_id, field, seq)
        self._pending.pop(key, None)
        self._set_status(key, SaveStatus.SAVED)
        self._settle(key)

    def _settle(self, key: EditKey) -> None:
        # Nothing newer is armed or queued for this key, so a later edit may restart at seq 1.
        if key in self._timers or key in self._pending:
            return
        lock = self._locks.get(key)
        if lock is not None and lock.locked():
            return
        self._seq.pop(key, None)
        self._locks.pop(key, None)

    def _set_status(self, key: EditKey, status: SaveStatus) -> None:
        if self._status.get(key) == status:
            return
        self._status[key] = status
        if self._on_status is not None:
            try:
                self._on_status(key[0], key[1], status)
            except Exception:
                logger.exception("Save status listener failed")
