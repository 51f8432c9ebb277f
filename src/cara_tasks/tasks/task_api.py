# src/cara_tasks/tasks/task_api.py

"""
High-level task actions used by connectors (console commands, chat).

Writes go to the remote store and come back through the live subscription; the only
local-first mutations are drag-reorder (OrderIndex) and debounced text edits.
Inference problems never block creation or editing: a task always ends up with a
usable priority (DEFAULT_PRIORITY when the service is down).
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, cast

from ..core.persona import TASK_CREATED_SUFFIX
from ..core.state import AppState
from ..llm.retry import InferenceFailure
from .ordering import OrderChange, OrderIndex
from .recurrence import next_occurrence
from .task_models import (
    DEFAULT_PRIORITY,
    RecurrenceRule,
    Task,
    TaskDraft,
    TaskStatus,
    clamp_priority,
)
from .task_store import PersistenceError

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TaskInsights:
    summary: str
    steps: list[str]


@dataclass(slots=True, frozen=True)
class ChatReply:
    text: str
    task_id: str | None = None


def _with_next_due(draft: TaskDraft) -> RecurrenceRule | None:
    rule = draft.recurrence
    if rule is None or draft.deadline is None:
        return rule
    return dataclasses.replace(rule, next_due=next_occurrence(rule, draft.deadline))


async def create_task(state: AppState, draft: TaskDraft, *, owner_id: str | None = None) -> str:
    """
    Create a task from form input.

    The next-action suggestion and the initial priority are computed inline; both
    degrade silently (no suggestion / DEFAULT_PRIORITY) when inference fails.
    """
    title = (draft.title or "").strip()
    if not title:
        raise ValueError("title is required")

    owner = owner_id or state.owner_id

    try:
        estimate = await state.estimator.estimate_task(draft, with_suggestion=True)
        priority, suggestion = estimate.priority, estimate.suggestion
    except InferenceFailure as e:
        logger.warning("Priority estimate failed for new task %r: %s", title, e)
        priority, suggestion = DEFAULT_PRIORITY, None

    fields: dict[str, Any] = {
        "title": title,
        "description": (draft.description or "").strip(),
        "dealership": (draft.dealership or "").strip() or None,
        "insurance_claim": (draft.insurance_claim or "").strip() or None,
        "deadline": draft.deadline,
        "recurrence": _with_next_due(draft),
        "status": TaskStatus.PENDING,
        "ai_priority": priority,
        "ai_suggestion": suggestion,
        "order": await state.store.next_order(owner),
    }
    task_id = await state.store.add_task(owner, fields)
    logger.info("Task created id=%s priority=%s", task_id, priority)
    return task_id


async def create_task_from_chat(state: AppState, draft: TaskDraft, *, owner_id: str | None = None) -> str:
    """Persist an extracted draft as-is (sanitized); no extra inference round trips."""
    owner = owner_id or state.owner_id
    fields: dict[str, Any] = {
        "title": (draft.title or "").strip() or "New Task",
        "description": (draft.description or "").strip(),
        "dealership": (draft.dealership or "").strip() or None,
        "insurance_claim": (draft.insurance_claim or "").strip() or None,
        "ai_priority": clamp_priority(draft.ai_priority) if draft.ai_priority else DEFAULT_PRIORITY,
        "status": TaskStatus.PENDING,
        "order": await state.store.next_order(owner),
    }
    task_id = await state.store.add_task(owner, fields)
    logger.info("Task created from chat id=%s", task_id)
    return task_id


async def update_task(state: AppState, task_id: str, changes: dict[str, Any]) -> bool:
    if not task_id:
        return False
    try:
        await state.store.update_task(task_id, changes)
        return True
    except (PersistenceError, ValueError) as e:
        logger.error("Error updating task %s: %s", task_id, e)
        return False


async def set_status(state: AppState, task_id: str, status: TaskStatus | str) -> bool:
    return await update_task(state, task_id, {"status": TaskStatus(status)})


async def complete_task(state: AppState, task_id: str) -> str | None:
    """
    Mark a task completed. For a recurring task, the next occurrence is created
    (unless the series ended) and its id returned.
    """
    # The store is authoritative; the local copy may be a snapshot behind.
    task = await state.store.get_task(task_id)
    if task is None:
        logger.warning("complete_task: unknown task id=%s", task_id)
        return None
    if task.status == TaskStatus.COMPLETED:
        logger.info("complete_task: task=%s already completed", task_id)
        return None

    if not await set_status(state, task_id, TaskStatus.COMPLETED):
        return None

    rule = task.recurrence
    if rule is None:
        return None

    anchor = rule.next_due or task.deadline
    if anchor is None:
        return None

    due = anchor if rule.next_due else next_occurrence(rule, anchor)
    if due is None or (rule.end_date is not None and due > rule.end_date):
        logger.info("Recurring series ended for task=%s", task_id)
        return None

    return await _create_occurrence(state, task, rule, due)


async def _create_occurrence(state: AppState, task: Task, rule: RecurrenceRule, due: datetime) -> str:
    fields: dict[str, Any] = {
        "title": task.title,
        "description": task.description,
        "dealership": task.dealership,
        "insurance_claim": task.insurance_claim,
        "deadline": due,
        "recurrence": dataclasses.replace(rule, next_due=next_occurrence(rule, due)),
        "status": TaskStatus.PENDING,
        "ai_priority": task.ai_priority,
        "ai_suggestion": task.ai_suggestion,
        "order": await state.store.next_order(task.assigned_to),
    }
    new_id = await state.store.add_task(task.assigned_to, fields)
    logger.info("Next occurrence created id=%s from task=%s due=%s", new_id, task.id, due.isoformat())
    return new_id


async def delete_task(state: AppState, task_id: str) -> bool:
    if not task_id:
        return False
    try:
        await state.store.delete_task(task_id)
    except PersistenceError as e:
        logger.error("Error deleting task %s: %s", task_id, e)
        return False
    state.writer.forget(task_id)
    state.collection.remove_local(task_id)
    return True


async def recalculate_priority(state: AppState, task: Task) -> int | None:
    try:
        estimate = await state.estimator.estimate_task(task)
    except InferenceFailure as e:
        logger.error("Error calculating priority for %s: %s", task.id, e)
        return None
    if not await update_task(state, task.id, {"ai_priority": estimate.priority}):
        return None
    return estimate.priority


async def reorder_task(state: AppState, task_id: str, target_order: int) -> list[OrderChange]:
    """Drag-reorder locally, then persist every changed order value."""
    changes = OrderIndex(state.collection).reorder(task_id, target_order)
    for change in changes:
        await update_task(state, change.task_id, {"order": change.order})
    return changes


async def assist_task(state: AppState, task: Task) -> TaskInsights:
    """Summary + steps. Raises InferenceFailure so the caller can offer a retry."""
    summary, steps = await asyncio.gather(
        state.estimator.summarize(task.description),
        state.estimator.suggest_steps(task.description),
        return_exceptions=True,
    )
    for result in (summary, steps):
        if isinstance(result, BaseException):
            raise result
    return TaskInsights(summary=cast(str, summary), steps=cast(list[str], steps))


async def handle_chat_message(state: AppState, message: str) -> ChatReply:
    """
    One assistant turn: detect a task in the message (creating it if found), then reply.

    Task creation problems are logged and do not interrupt the conversation.
    InferenceFailure from the reply itself propagates.
    """
    text = (message or "").strip()
    if not text:
        raise ValueError("message is empty")

    task_id: str | None = None
    draft = await state.estimator.extract_task(text)
    if draft is not None:
        try:
            task_id = await create_task_from_chat(state, draft)
        except (PersistenceError, ValueError) as e:
            logger.error("Error creating task from chat: %s", e)

    reply = await state.estimator.chat(text, state.chat_history)
    state.chat_history.append({"role": "user", "content": text})
    state.chat_history.append({"role": "assistant", "content": reply})

    if task_id:
        reply += TASK_CREATED_SUFFIX
    return ChatReply(text=reply, task_id=task_id)
