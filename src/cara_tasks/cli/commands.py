# src/cara_tasks/cli/commands.py

from __future__ import annotations

import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import datetime
from typing import cast

from ..core.state import AppState
from ..llm.retry import InferenceFailure
from ..tasks import task_api
from ..tasks.filters import apply, compute_stats
from ..tasks.task_models import (
    STATUS_ALL,
    FilterSpec,
    InsuranceFilter,
    SortKey,
    Task,
    TaskDraft,
    TaskStatus,
)

CommandEmitter = Callable[[str], None]
CommandResult = str | Awaitable[str]
CommandHandler2 = Callable[[AppState, list[str]], CommandResult]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], CommandResult]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Slash-command registry used by connectors (/help, /tasks, ...). Handlers may be async."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            result = cast(CommandHandler3, handler)(state, args, emit)
        else:
            result = cast(CommandHandler2, handler)(state, args)

        if inspect.isawaitable(result):
            result = await result
        return cast(str, result)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _view(state: AppState) -> list[Task]:
    return apply(state.collection.all(), state.filter_spec, state.sort_key)


def _resolve(state: AppState, ref: str) -> Task | None:
    """A task reference is a 1-based index into the current view or an id prefix."""
    view = _view(state)
    if ref.isdigit() and 1 <= int(ref) <= len(view):
        return view[int(ref) - 1]
    matches = [t for t in state.collection.all() if t.id.startswith(ref)]
    return matches[0] if len(matches) == 1 else None


def _format_task(i: int, t: Task, state: AppState) -> str:
    prio = f"P{t.ai_priority}" if t.ai_priority is not None else "P-"
    line = f"{i:>2}. [{t.status.value}] {prio} #{t.order} {t.title} ({t.id[:8]})"
    extras = []
    if t.dealership:
        extras.append(f"dealer: {t.dealership}")
    if t.insurance_claim:
        extras.append(f"claim: {t.insurance_claim}")
    if t.deadline:
        extras.append(f"due: {t.deadline.astimezone().strftime('%Y-%m-%d %H:%M')}")
    if t.recurrence:
        extras.append(f"repeats {t.recurrence.frequency.value}")
    save = state.writer.status(t.id, "description")
    if save is not None:
        extras.append(f"description {save.value}")
    if extras:
        line += "\n      " + " | ".join(extras)
    if t.ai_suggestion:
        line += f"\n      next: {t.ai_suggestion}"
    return line


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    models = ", ".join(list(getattr(state.settings, "llm_models", []) or []))
    rec = state.reconciler
    return (
        "Status:\n"
        f"  Owner: {state.owner_id}\n"
        f"  Sync: {rec.state.value} (snapshots applied: {rec.snapshots_applied})\n"
        f"  Tasks: {len(state.collection)}\n"
        f"  Pending writes: {'yes' if state.writer.has_pending() else 'no'}\n"
        f"  Models (priority -> fallback): {models}"
    )


def cmd_tasks(state: AppState, args: list[str]) -> str:
    view = _view(state)
    if not view:
        return "No tasks match the current filter."
    header = f"Tasks (sort: {state.sort_key.value}, {len(view)}/{len(state.collection)}):"
    return "\n".join([header, *(_format_task(i, t, state) for i, t in enumerate(view, start=1))])


async def cmd_add(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /add title | description | dealership | claim
    """
    raw = " ".join(args)
    parts = [p.strip() for p in raw.split("|")]
    if not parts or not parts[0]:
        return "Usage: /add title | description | dealership | claim"

    draft = TaskDraft(
        title=parts[0],
        description=parts[1] if len(parts) > 1 else "",
        dealership=parts[2] if len(parts) > 2 and parts[2] else None,
        insurance_claim=parts[3] if len(parts) > 3 and parts[3] else None,
    )
    if emit:
        with contextlib.suppress(Exception):
            emit("[AI] Estimating priority and next action...")
    task_id = await task_api.create_task(state, draft)
    return f"Task created ({task_id[:8]})."


async def _set_status(state: AppState, args: list[str], status: TaskStatus) -> str:
    if not args:
        return "Usage: /<command> <task>"
    task = _resolve(state, args[0])
    if task is None:
        return f"Unknown task: {args[0]}"
    if status == TaskStatus.COMPLETED:
        next_id = await task_api.complete_task(state, task.id)
        if next_id:
            return f"Completed '{task.title}'. Next occurrence created ({next_id[:8]})."
        return f"Completed '{task.title}'."
    ok = await task_api.set_status(state, task.id, status)
    return f"'{task.title}' -> {status.value}" if ok else "Failed to update task."


async def cmd_done(state: AppState, args: list[str]) -> str:
    return await _set_status(state, args, TaskStatus.COMPLETED)


async def cmd_start(state: AppState, args: list[str]) -> str:
    return await _set_status(state, args, TaskStatus.IN_PROGRESS)


async def cmd_reopen(state: AppState, args: list[str]) -> str:
    return await _set_status(state, args, TaskStatus.PENDING)


async def cmd_delete(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /delete <task>"
    task = _resolve(state, args[0])
    if task is None:
        return f"Unknown task: {args[0]}"
    ok = await task_api.delete_task(state, task.id)
    return f"Deleted '{task.title}'." if ok else "Failed to delete task."


async def cmd_move(state: AppState, args: list[str]) -> str:
    if len(args) != 2 or not args[1].lstrip("-").isdigit():
        return "Usage: /move <task> <order>"
    task = _resolve(state, args[0])
    if task is None:
        return f"Unknown task: {args[0]}"
    changes = await task_api.reorder_task(state, task.id, int(args[1]))
    return f"Moved '{task.title}' to order {args[1]} ({len(changes)} orders changed)."


def cmd_edit(state: AppState, args: list[str]) -> str:
    if len(args) < 2:
        return "Usage: /edit <task> <new description>"
    task = _resolve(state, args[0])
    if task is None:
        return f"Unknown task: {args[0]}"
    state.writer.on_edit(task.id, "description", " ".join(args[1:]))
    return "Saving..."


def cmd_retry(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /retry <task>"
    task = _resolve(state, args[0])
    if task is None:
        return f"Unknown task: {args[0]}"
    if state.writer.retry(task.id, "description"):
        return "Retrying save..."
    return "Nothing to retry."


async def cmd_priority(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /priority <task>"
    task = _resolve(state, args[0])
    if task is None:
        return f"Unknown task: {args[0]}"
    priority = await task_api.recalculate_priority(state, task)
    if priority is None:
        return "Priority calculation failed. Try /priority again."
    return f"'{task.title}' priority: {priority}"


async def cmd_assist(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    if not args:
        return "Usage: /assist <task>"
    task = _resolve(state, args[0])
    if task is None:
        return f"Unknown task: {args[0]}"
    if emit:
        with contextlib.suppress(Exception):
            emit("[AI] Generating insights...")
    try:
        insights = await task_api.assist_task(state, task)
    except InferenceFailure as e:
        logger.info("assist failed task=%s: %s", task.id, e)
        return "Failed to generate AI insights. Please try again (/assist)."

    lines = [f"Summary: {insights.summary}", "Steps:"]
    lines.extend(f"  - {s}" for s in insights.steps)
    strategy = state.strategies.get(task.id)
    if strategy:
        lines.append(f"Deadline strategy: {strategy}")
    return "\n".join(lines)


def cmd_filter(state: AppState, args: list[str]) -> str:
    """
    /filter clear
    /filter status=pending search=brake dealership=main insurance=required min=5
    """
    if not args:
        s = state.filter_spec
        return (
            f"Filter: status={s.status} search={s.search!r} dealership={s.dealership!r} "
            f"insurance={s.insurance.value} min={s.min_priority}"
        )
    if args[0].lower() == "clear":
        state.filter_spec = FilterSpec()
        return "Filter cleared."

    spec = state.filter_spec
    for arg in args:
        key, sep, value = arg.partition("=")
        if not sep:
            return f"Bad filter term: {arg} (expected key=value)"
        key = key.lower()
        try:
            if key == "status":
                spec = replace(spec, status=STATUS_ALL if value == STATUS_ALL else TaskStatus(value).value)
            elif key == "search":
                spec = replace(spec, search=value)
            elif key == "dealership":
                spec = replace(spec, dealership=value)
            elif key == "insurance":
                spec = replace(spec, insurance=InsuranceFilter(value))
            elif key in ("min", "min_priority"):
                spec = replace(spec, min_priority=int(value))
            else:
                return f"Unknown filter key: {key}"
        except ValueError:
            return f"Bad value for {key}: {value}"

    state.filter_spec = spec
    return "Filter updated."


def cmd_sort(state: AppState, args: list[str]) -> str:
    if not args:
        return f"Sorting by {state.sort_key.value}. Use /sort priority|date|status."
    try:
        state.sort_key = SortKey(args[0].lower())
    except ValueError:
        return "Usage: /sort priority|date|status"
    return f"Sorting by {state.sort_key.value}."


def cmd_stats(state: AppState, args: list[str]) -> str:
    s = compute_stats(state.collection.all())
    return (
        f"Stats ({datetime.now().astimezone().strftime('%Y-%m-%d %H:%M')}):\n"
        f"  Total: {s.total}\n"
        f"  Pending: {s.pending} ({s.pending_rate}%)\n"
        f"  In progress: {s.in_progress} ({s.in_progress_rate}%)\n"
        f"  Completed: {s.completed} ({s.completion_rate}%)\n"
        f"  Priority high/medium/low: {s.high_priority}/{s.medium_priority}/{s.low_priority}"
    )


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show sync/engine status.")
registry.register("tasks", cmd_tasks, help_text="List tasks (current filter/sort).", aliases=["ls"])
registry.register("add", cmd_add, help_text="Create a task: /add title | description | dealership | claim.")
registry.register("done", cmd_done, help_text="Complete a task: /done <task>.")
registry.register("start", cmd_start, help_text="Mark a task in progress: /start <task>.")
registry.register("reopen", cmd_reopen, help_text="Mark a task pending again: /reopen <task>.")
registry.register("delete", cmd_delete, help_text="Delete a task: /delete <task>.", aliases=["rm"])
registry.register("move", cmd_move, help_text="Reorder a task: /move <task> <order>.")
registry.register("edit", cmd_edit, help_text="Edit description (autosaved): /edit <task> <text>.")
registry.register("retry", cmd_retry, help_text="Retry a failed description save: /retry <task>.")
registry.register("priority", cmd_priority, help_text="Recalculate AI priority: /priority <task>.")
registry.register("assist", cmd_assist, help_text="AI summary and next steps: /assist <task>.")
registry.register(
    "filter",
    cmd_filter,
    help_text="Filter: /filter status=.. search=.. dealership=.. insurance=any|required|absent min=N | clear.",
)
registry.register("sort", cmd_sort, help_text="Sort: /sort priority|date|status.")
registry.register("stats", cmd_stats, help_text="Task statistics.")
