# src/cara_tasks/tasks/task_store.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sqlite3
import time
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..core.ports import ErrorHandler, SnapshotHandler
from .task_models import MUTABLE_FIELDS, RecurrenceRule, Task, TaskStatus, clamp_priority

logger = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """A write was rejected by the store. The caller keeps its local edit."""


def _to_ts(dt: datetime | None) -> float | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.timestamp()


def _from_ts(ts: float | None) -> datetime | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(float(ts), tz=UTC)


class TaskSubscription:
    """
    Live, owner-scoped subscription.

    Change notifications are queued and drained by a single pump task, so snapshots
    reach the handler in write order and one handler call finishes before the next
    starts. unsubscribe() is idempotent and stops delivery immediately.
    """

    def __init__(
            self,
            store: TaskStore,
            owner_id: str,
            on_snapshot: SnapshotHandler,
            on_error: ErrorHandler,
    ) -> None:
        self._store = store
        self.owner_id = owner_id
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._queue: asyncio.Queue[None] = asyncio.Queue()
        self._active = True
        self._pump = asyncio.get_running_loop().create_task(self._run())

    @property
    def active(self) -> bool:
        return self._active

    def notify(self) -> None:
        if self._active:
            self._queue.put_nowait(None)

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._pump.cancel()
        self._store._drop_subscription(self)
        logger.debug("Subscription closed owner=%s", self.owner_id)

    async def _run(self) -> None:
        while self._active:
            await self._queue.get()
            # Coalesce bursts: every delivery is a full snapshot anyway.
            while not self._queue.empty():
                self._queue.get_nowait()

            if not self._active:
                break

            try:
                tasks = self._store._list_for_owner(self.owner_id)
            except Exception as e:
                logger.error("Snapshot read failed owner=%s: %s", self.owner_id, e)
                self._on_error(e)
                continue

            try:
                self._on_snapshot(tasks)
            except Exception:
                logger.exception("Snapshot handler crashed owner=%s", self.owner_id)


class TaskStore:
    """
    SQLite task store acting as the remote collection.

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Each method opens its own short-lived SQLite connection. Methods are async to
    match the remote-store port; the SQLite work itself runs inline.
    updated_at is assigned here (server timestamp) and never moves backwards.
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._subscriptions: list[TaskSubscription] = []
        self._ensure_schema()
        logger.info("TaskStore ready db=%s total=%s", self._db_path, self.count_tasks())

    def close(self) -> None:
        for sub in list(self._subscriptions):
            sub.unsubscribe()

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'pending',
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )

            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("dealership", "TEXT")
            add_col("insurance_claim", "TEXT")
            add_col("deadline", "REAL")
            add_col("ai_priority", "INTEGER")
            add_col("ai_suggestion", "TEXT")
            add_col("reminder_sent", "INTEGER NOT NULL DEFAULT 0")
            add_col("recurrence", "TEXT")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_owner ON tasks(owner_id, sort_order)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _recurrence_to_str(rule: RecurrenceRule | None) -> str | None:
        return json.dumps(rule.to_dict()) if rule is not None else None

    @staticmethod
    def _str_to_recurrence(s: str | None) -> RecurrenceRule | None:
        if not s:
            return None
        try:
            raw = json.loads(s)
            return RecurrenceRule.from_dict(raw) if isinstance(raw, dict) else None
        except (ValueError, TypeError):
            logger.warning("Ignoring malformed recurrence payload: %r", s)
            return None

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        created = _from_ts(row["created_at"]) or datetime.fromtimestamp(0, tz=UTC)
        return Task(
            id=str(row["id"]),
            title=str(row["title"] or ""),
            description=str(row["description"] or ""),
            status=TaskStatus.from_db(row["status"]),
            assigned_to=str(row["owner_id"]),
            order=int(row["sort_order"] or 0),
            created_at=created,
            updated_at=_from_ts(row["updated_at"]) or created,
            dealership=row["dealership"],
            insurance_claim=row["insurance_claim"],
            deadline=_from_ts(row["deadline"]),
            ai_priority=int(row["ai_priority"]) if row["ai_priority"] is not None else None,
            ai_suggestion=row["ai_suggestion"],
            reminder_sent=bool(row["reminder_sent"]),
            recurrence=self._str_to_recurrence(row["recurrence"]),
        )

    def _encode(self, name: str, value: Any) -> tuple[str, Any]:
        if name == "order":
            return "sort_order", int(value)
        if name == "status":
            return "status", TaskStatus(value).value
        if name == "deadline":
            return "deadline", _to_ts(value)
        if name == "recurrence":
            return "recurrence", self._recurrence_to_str(value)
        if name == "ai_priority":
            return "ai_priority", clamp_priority(value) if value is not None else None
        if name == "reminder_sent":
            return "reminder_sent", 1 if value else 0
        if name == "title":
            title = str(value or "").strip()
            if not title:
                raise ValueError("title is required")
            return "title", title
        return name, value

    def _list_for_owner(self, owner_id: str) -> list[Task]:
        conn = self._get_conn()
        try:
            cur = conn.execute(
                "SELECT * FROM tasks WHERE owner_id = ? ORDER BY sort_order ASC, created_at ASC",
                (owner_id,),
            )
            return [self._row_to_task(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def _owner_of(self, task_id: str) -> str | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT owner_id FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return str(row["owner_id"]) if row else None
        finally:
            conn.close()

    def _notify(self, owner_id: str | None) -> None:
        for sub in list(self._subscriptions):
            if sub.owner_id == owner_id:
                sub.notify()

    def _drop_subscription(self, sub: TaskSubscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    # ---- public API ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        finally:
            conn.close()

    def subscribe(
            self,
            owner_id: str,
            on_snapshot: SnapshotHandler,
            on_error: ErrorHandler,
    ) -> TaskSubscription:
        """Start a live subscription (needs a running event loop). First snapshot is immediate."""
        sub = TaskSubscription(self, owner_id, on_snapshot, on_error)
        self._subscriptions.append(sub)
        sub.notify()
        logger.debug("Subscription opened owner=%s", owner_id)
        return sub

    async def list_tasks(self, owner_id: str) -> list[Task]:
        return self._list_for_owner(owner_id)

    async def get_task(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    async def next_order(self, owner_id: str) -> int:
        conn = self._get_conn()
        try:
            (mx,) = conn.execute(
                "SELECT MAX(sort_order) FROM tasks WHERE owner_id = ?", (owner_id,)
            ).fetchone()
            return 0 if mx is None else int(mx) + 1
        finally:
            conn.close()

    async def add_task(self, owner_id: str, fields: dict[str, Any]) -> str:
        if not owner_id:
            raise ValueError("owner_id is required")

        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"unknown task fields: {sorted(unknown)}")
        if "title" not in fields:
            raise ValueError("title is required")

        columns: dict[str, Any] = {}
        for name, value in fields.items():
            col, encoded = self._encode(name, value)
            columns[col] = encoded

        columns.setdefault("description", "")
        columns.setdefault("status", TaskStatus.PENDING.value)
        columns.setdefault("sort_order", 0)

        now = time.time()
        task_id = uuid.uuid4().hex
        columns.update(id=task_id, owner_id=owner_id, created_at=now, updated_at=now)

        names = ", ".join(columns)
        placeholders = ", ".join("?" for _ in columns)

        conn = self._get_conn()
        try:
            conn.execute(f"INSERT INTO tasks({names}) VALUES ({placeholders})", tuple(columns.values()))
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"add_task failed: {e}") from e
        finally:
            conn.close()

        logger.debug("Task added id=%s owner=%s", task_id, owner_id)
        self._notify(owner_id)
        return task_id

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> None:
        """
        Field-level update. updated_at is always refreshed (monotonic).

        reminder_sent is a latch: once stored true, a false write is ignored.
        """
        if "assigned_to" in changes:
            raise ValueError("assigned_to is immutable")
        unknown = set(changes) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"unknown task fields: {sorted(unknown)}")

        sets: list[str] = []
        params: list[Any] = []
        for name, value in changes.items():
            if name == "reminder_sent" and not value:
                continue
            col, encoded = self._encode(name, value)
            sets.append(f"{col} = ?")
            params.append(encoded)

        sets.append("updated_at = MAX(updated_at, ?)")
        params.append(time.time())
        params.append(task_id)

        conn = self._get_conn()
        try:
            cur = conn.execute(f"UPDATE tasks SET {', '.join(sets)} WHERE id = ?", params)
            conn.commit()
            if cur.rowcount != 1:
                raise PersistenceError(f"task not found: {task_id}")
            owner = conn.execute("SELECT owner_id FROM tasks WHERE id = ?", (task_id,)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"update_task failed: {e}") from e
        finally:
            conn.close()

        self._notify(str(owner["owner_id"]) if owner else None)

    async def delete_task(self, task_id: str) -> None:
        owner = self._owner_of(task_id)
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"delete_task failed: {e}") from e
        finally:
            conn.close()

        logger.debug("Task deleted id=%s", task_id)
        self._notify(owner)
