# tests/test_task_store.py

from __future__ import annotations

import asyncio
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

import pytest

from cara_tasks.tasks.task_models import Frequency, RecurrenceRule, TaskStatus
from cara_tasks.tasks.task_store import PersistenceError, TaskStore


@pytest.mark.asyncio
async def test_add_get_update_delete(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    deadline = datetime(2025, 3, 1, 17, 0, tzinfo=UTC)

    task_id = await store.add_task(
        "owner-1",
        {
            "title": "  Brake repair ",
            "description": "Replace pads",
            "dealership": "Main St Motors",
            "insurance_claim": "A123",
            "deadline": deadline,
            "ai_priority": 15,
            "order": 3,
        },
    )

    task = await store.get_task(task_id)
    assert task is not None
    assert task.title == "Brake repair"
    assert task.status == TaskStatus.PENDING
    assert task.assigned_to == "owner-1"
    assert task.order == 3
    assert task.ai_priority == 10
    assert task.deadline == deadline
    assert task.reminder_sent is False
    assert task.created_at.tzinfo is not None

    await store.update_task(task_id, {"status": TaskStatus.IN_PROGRESS, "description": "Pads ordered"})
    task = await store.get_task(task_id)
    assert task.status == TaskStatus.IN_PROGRESS
    assert task.description == "Pads ordered"

    await store.delete_task(task_id)
    assert await store.get_task(task_id) is None
    assert store.count_tasks() == 0


@pytest.mark.asyncio
async def test_updated_at_never_moves_backwards(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    task_id = await store.add_task("owner-1", {"title": "Oil change"})
    created = await store.get_task(task_id)

    await store.update_task(task_id, {"description": "first"})
    first = await store.get_task(task_id)
    await store.update_task(task_id, {"description": "second"})
    second = await store.get_task(task_id)

    assert created.updated_at <= first.updated_at <= second.updated_at


@pytest.mark.asyncio
async def test_reminder_sent_is_a_latch(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    task_id = await store.add_task("owner-1", {"title": "Inspection"})

    await store.update_task(task_id, {"reminder_sent": True})
    await store.update_task(task_id, {"reminder_sent": False})

    assert (await store.get_task(task_id)).reminder_sent is True


@pytest.mark.asyncio
async def test_rejected_writes(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    task_id = await store.add_task("owner-1", {"title": "Inspection"})

    with pytest.raises(ValueError):
        await store.update_task(task_id, {"assigned_to": "owner-2"})
    with pytest.raises(ValueError):
        await store.update_task(task_id, {"color": "red"})
    with pytest.raises(ValueError):
        await store.update_task(task_id, {"title": "   "})
    with pytest.raises(ValueError):
        await store.add_task("owner-1", {"description": "no title"})
    with pytest.raises(PersistenceError):
        await store.update_task("missing", {"description": "x"})


@pytest.mark.asyncio
async def test_next_order_and_owner_scoping(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    assert await store.next_order("owner-1") == 0

    await store.add_task("owner-1", {"title": "a", "order": 0})
    await store.add_task("owner-1", {"title": "b", "order": 4})
    await store.add_task("owner-2", {"title": "c", "order": 10})

    assert await store.next_order("owner-1") == 5
    assert [t.title for t in await store.list_tasks("owner-1")] == ["a", "b"]


@pytest.mark.asyncio
async def test_recurrence_is_persisted(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    rule = RecurrenceRule(
        Frequency.WEEKLY,
        days_of_week=[1, 3],
        next_due=datetime(2025, 1, 15, 9, 0, tzinfo=UTC),
    )

    task_id = await store.add_task("owner-1", {"title": "Weekly check", "recurrence": rule})

    assert (await store.get_task(task_id)).recurrence == rule


@pytest.mark.asyncio
async def test_subscription_delivers_full_snapshots_in_order(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    snapshots: list[list[str]] = []
    errors: list[Exception] = []

    sub = store.subscribe("owner-1", lambda tasks: snapshots.append([t.title for t in tasks]), errors.append)
    await asyncio.sleep(0.02)
    assert snapshots == [[]]

    await store.add_task("owner-1", {"title": "a", "order": 0})
    await asyncio.sleep(0.02)
    await store.add_task("owner-1", {"title": "b", "order": 1})
    await asyncio.sleep(0.02)
    await store.add_task("owner-2", {"title": "other"})
    await asyncio.sleep(0.02)

    assert snapshots == [[], ["a"], ["a", "b"]]
    assert errors == []

    sub.unsubscribe()
    sub.unsubscribe()
    assert not sub.active

    await store.add_task("owner-1", {"title": "c"})
    await asyncio.sleep(0.02)
    assert snapshots[-1] == ["a", "b"]


@pytest.mark.asyncio
async def test_subscription_read_failure_goes_to_error_callback(tmp_path: Path) -> None:
    store = TaskStore(tmp_path / "tasks.sqlite3")
    errors: list[Exception] = []

    def broken(_owner_id: str):
        raise sqlite3.OperationalError("disk I/O error")

    store._list_for_owner = broken  # type: ignore[method-assign]
    sub = store.subscribe("owner-1", lambda tasks: None, errors.append)
    await asyncio.sleep(0.02)

    assert len(errors) == 1
    assert isinstance(errors[0], sqlite3.OperationalError)
    sub.unsubscribe()


def test_schema_migration_adds_missing_columns(tmp_path: Path) -> None:
    db = tmp_path / "tasks.sqlite3"
    conn = sqlite3.connect(db)
    conn.execute(
        """
        CREATE TABLE tasks (
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
    conn.execute(
        "INSERT INTO tasks(id, owner_id, title, created_at, updated_at) VALUES ('x', 'o', 'Legacy', 1.0, 1.0)"
    )
    conn.commit()
    conn.close()

    store = TaskStore(db)

    assert store.count_tasks() == 1
    task = store._list_for_owner("o")[0]
    assert task.title == "Legacy"
    assert task.ai_priority is None
    assert task.reminder_sent is False
