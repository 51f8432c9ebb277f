# tests/test_task_api.py

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime

import pytest

from cara_tasks.core.persona import TASK_CREATED_SUFFIX
from cara_tasks.core.state import AppState
from cara_tasks.llm.retry import InferenceFailure
from cara_tasks.tasks import task_api
from cara_tasks.tasks.task_models import Frequency, RecurrenceRule, TaskDraft, TaskStatus

from .fakes import FakeCompletion, FakeRemoteStore, keyword_responder, make_task

EXTRACTED = json.dumps(
    {
        "title": "Brake repair",
        "description": "Fix the brakes on the blue sedan",
        "dealership": "Main St Motors",
        "insuranceClaim": "A123",
        "aiPriority": 42,
    }
)


@pytest.mark.asyncio
async def test_chat_message_creates_pending_task_with_clamped_priority(
    sqlite_state: AppState, backend: FakeCompletion
) -> None:
    state = sqlite_state
    backend.responder = keyword_responder(
        {"extract task information": EXTRACTED},
        default="I'll get that brake job on the board.",
    )
    state.reconciler.start(state.owner_id)

    reply = await task_api.handle_chat_message(state, "brake pads worn, dealership Main St Motors, claim #A123")
    await asyncio.sleep(0.05)

    assert reply.task_id is not None
    assert reply.text == "I'll get that brake job on the board." + TASK_CREATED_SUFFIX

    task = state.collection.get(reply.task_id)
    assert task is not None
    assert task.status == TaskStatus.PENDING
    assert task.ai_priority == 10
    assert task.dealership == "Main St Motors"
    assert task.insurance_claim == "A123"
    assert state.chat_history[-2:] == [
        {"role": "user", "content": "brake pads worn, dealership Main St Motors, claim #A123"},
        {"role": "assistant", "content": "I'll get that brake job on the board."},
    ]

    state.reconciler.stop()
    state.store.close()


@pytest.mark.asyncio
async def test_chat_message_without_task_only_replies(
    state: AppState, backend: FakeCompletion, remote: FakeRemoteStore
) -> None:
    backend.responder = keyword_responder({"extract task information": "null"}, default="Hello!")

    reply = await task_api.handle_chat_message(state, "hi there")

    assert reply.text == "Hello!"
    assert reply.task_id is None
    assert remote.added == []


@pytest.mark.asyncio
async def test_chat_reply_failure_propagates(state: AppState, backend: FakeCompletion) -> None:
    backend.default = RuntimeError("down")

    with pytest.raises(InferenceFailure):
        await task_api.handle_chat_message(state, "hi there")


@pytest.mark.asyncio
async def test_create_task_from_chat_defaults(state: AppState, remote: FakeRemoteStore) -> None:
    task_id = await task_api.create_task_from_chat(state, TaskDraft(title="  ", ai_priority=0))

    owner, fields = remote.added[0]
    assert owner == "owner-1"
    assert fields["title"] == "New Task"
    assert fields["status"] == TaskStatus.PENDING
    assert fields["ai_priority"] == 5
    assert remote.tasks[task_id].order == 0


@pytest.mark.asyncio
async def test_create_task_estimates_priority_and_suggestion(
    state: AppState, backend: FakeCompletion, remote: FakeRemoteStore
) -> None:
    backend.responder = keyword_responder(
        {
            "rate its priority": "8",
            "one specific, actionable next step": "Order pads from the dealership",
        }
    )
    remote.tasks = {"old": make_task("old", order=4)}

    task_id = await task_api.create_task(state, TaskDraft(title="Brake repair", description="Pads worn"))

    created = remote.tasks[task_id]
    assert created.ai_priority == 8
    assert created.ai_suggestion == "Order pads from the dealership"
    assert created.order == 5
    assert created.status == TaskStatus.PENDING


@pytest.mark.asyncio
async def test_create_task_uses_default_priority_when_inference_fails(
    state: AppState, backend: FakeCompletion, remote: FakeRemoteStore
) -> None:
    backend.default = RuntimeError("service down")

    task_id = await task_api.create_task(state, TaskDraft(title="Oil change"))

    assert remote.tasks[task_id].ai_priority == 5
    assert remote.tasks[task_id].ai_suggestion is None


@pytest.mark.asyncio
async def test_create_task_requires_title(state: AppState) -> None:
    with pytest.raises(ValueError):
        await task_api.create_task(state, TaskDraft(title="   "))


@pytest.mark.asyncio
async def test_create_recurring_task_precomputes_next_due(state: AppState, remote: FakeRemoteStore) -> None:
    deadline = datetime(2025, 1, 14, 9, 0, tzinfo=UTC)  # Tuesday
    draft = TaskDraft(
        title="Weekly lot check",
        deadline=deadline,
        recurrence=RecurrenceRule(Frequency.WEEKLY, days_of_week=[1, 3]),
    )

    task_id = await task_api.create_task(state, draft)

    assert remote.tasks[task_id].recurrence.next_due == datetime(2025, 1, 15, 9, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_completing_recurring_task_creates_next_occurrence(
    state: AppState, remote: FakeRemoteStore
) -> None:
    rule = RecurrenceRule(
        Frequency.DAILY,
        interval=1,
        next_due=datetime(2025, 1, 11, 9, 0, tzinfo=UTC),
    )
    remote.tasks = {
        "r1": make_task(
            "r1",
            title="Daily wash",
            ai_priority=6,
            deadline=datetime(2025, 1, 10, 9, 0, tzinfo=UTC),
            recurrence=rule,
        )
    }

    next_id = await task_api.complete_task(state, "r1")

    assert remote.tasks["r1"].status == TaskStatus.COMPLETED
    assert next_id is not None
    nxt = remote.tasks[next_id]
    assert nxt.title == "Daily wash"
    assert nxt.status == TaskStatus.PENDING
    assert nxt.deadline == datetime(2025, 1, 11, 9, 0, tzinfo=UTC)
    assert nxt.recurrence.next_due == datetime(2025, 1, 12, 9, 0, tzinfo=UTC)
    assert nxt.ai_priority == 6


@pytest.mark.asyncio
async def test_completing_last_occurrence_ends_the_series(state: AppState, remote: FakeRemoteStore) -> None:
    rule = RecurrenceRule(Frequency.DAILY, end_date=datetime(2025, 1, 10, 23, 0, tzinfo=UTC))
    remote.tasks = {
        "r1": make_task("r1", deadline=datetime(2025, 1, 10, 9, 0, tzinfo=UTC), recurrence=rule)
    }

    assert await task_api.complete_task(state, "r1") is None
    assert remote.tasks["r1"].status == TaskStatus.COMPLETED
    assert len(remote.tasks) == 1


@pytest.mark.asyncio
async def test_completing_plain_task(state: AppState, remote: FakeRemoteStore) -> None:
    remote.tasks = {"p1": make_task("p1")}

    assert await task_api.complete_task(state, "p1") is None
    assert remote.tasks["p1"].status == TaskStatus.COMPLETED
    assert await task_api.complete_task(state, "missing") is None


@pytest.mark.asyncio
async def test_update_task_reports_failures(state: AppState, remote: FakeRemoteStore) -> None:
    remote.tasks = {"p1": make_task("p1")}
    remote.fail_writes = 1

    assert await task_api.update_task(state, "p1", {"description": "x"}) is False
    assert await task_api.update_task(state, "p1", {"description": "x"}) is True
    assert await task_api.update_task(state, "", {"description": "x"}) is False


@pytest.mark.asyncio
async def test_reorder_persists_every_changed_order(state: AppState, remote: FakeRemoteStore) -> None:
    tasks = [make_task("a", order=0), make_task("b", order=1), make_task("c", order=2)]
    remote.tasks = {t.id: t for t in tasks}
    state.collection.replace_all(tasks)

    changes = await task_api.reorder_task(state, "c", 0)

    assert [t.id for t in state.collection.all()] == ["c", "a", "b"]
    assert {c.task_id: c.order for c in changes} == {"c": 0, "a": 1, "b": 2}
    assert sorted(remote.writes) == [("a", {"order": 1}), ("b", {"order": 2}), ("c", {"order": 0})]


@pytest.mark.asyncio
async def test_delete_task_removes_locally(state: AppState, remote: FakeRemoteStore) -> None:
    task = make_task("a")
    remote.tasks = {"a": task}
    state.collection.replace_all([task])

    assert await task_api.delete_task(state, "a") is True
    assert remote.deleted == ["a"]
    assert len(state.collection) == 0


@pytest.mark.asyncio
async def test_recalculate_priority(state: AppState, backend: FakeCompletion, remote: FakeRemoteStore) -> None:
    task = make_task("a", ai_priority=2)
    remote.tasks = {"a": task}
    backend.default = "7"

    assert await task_api.recalculate_priority(state, task) == 7
    assert remote.writes == [("a", {"ai_priority": 7})]

    backend.default = RuntimeError("down")
    assert await task_api.recalculate_priority(state, task) is None


@pytest.mark.asyncio
async def test_assist_task_returns_summary_and_steps(state: AppState, backend: FakeCompletion) -> None:
    backend.responder = keyword_responder(
        {
            "summary of this task": "Replace worn pads and rotors.",
            "suggest 3 specific": "Lift car\nRemove wheels\nReplace pads",
        }
    )

    insights = await task_api.assist_task(state, make_task("a", description="Brakes squeal"))

    assert insights.summary == "Replace worn pads and rotors."
    assert insights.steps == ["Lift car", "Remove wheels", "Replace pads"]


@pytest.mark.asyncio
async def test_assist_task_failure_propagates(state: AppState, backend: FakeCompletion) -> None:
    backend.default = RuntimeError("down")

    with pytest.raises(InferenceFailure):
        await task_api.assist_task(state, make_task("a"))


@pytest.mark.asyncio
async def test_completing_twice_creates_one_occurrence(state: AppState, remote: FakeRemoteStore) -> None:
    rule = RecurrenceRule(Frequency.DAILY, next_due=datetime(2025, 1, 11, 9, 0, tzinfo=UTC))
    remote.tasks = {
        "r1": make_task("r1", deadline=datetime(2025, 1, 10, 9, 0, tzinfo=UTC), recurrence=rule)
    }
    # The local copy still shows the task as pending.
    state.collection.replace_all([remote.tasks["r1"]])

    first = await task_api.complete_task(state, "r1")
    second = await task_api.complete_task(state, "r1")

    assert first is not None
    assert second is None
    assert len(remote.added) == 1
    assert remote.writes == [("r1", {"status": TaskStatus.COMPLETED})]


@pytest.mark.asyncio
async def test_delete_task_drops_unsaved_edits(state: AppState, remote: FakeRemoteStore) -> None:
    task = make_task("a")
    remote.tasks = {"a": task}
    state.collection.replace_all([task])

    state.writer.on_edit("a", "description", "never saved")
    assert await task_api.delete_task(state, "a") is True
    await asyncio.sleep(0.15)

    assert remote.writes == []
    assert state.writer.pending_overlay() == {}
    assert state.writer.status("a", "description") is None
