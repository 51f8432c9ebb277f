# src/cara_tasks/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs on one event loop:
- the live task subscription (SyncReconciler),
- the deadline monitor,
- the console REPL.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging
from ..tasks.deadline_monitor import run_deadline_monitor
from ..tasks.debounce import SaveStatus
from ..tasks.task_models import Task

logger = logging.getLogger(__name__)


def _on_save_status(task_id: str, field: str, status: SaveStatus) -> None:
    if status == SaveStatus.ERROR:
        print(f"[SAVE] {field} of task {task_id[:8]} failed to save. Use /retry {task_id[:8]}.", flush=True)
    elif status == SaveStatus.SAVED:
        logger.info("Saved %s of task %s", field, task_id[:8])


def _on_strategy(task: Task, strategy: str) -> None:
    print(f"\n[DEADLINE] '{task.title}' is due soon.\nStrategy: {strategy}\n", flush=True)


async def _shutdown(state: AppState, monitor: asyncio.Task[None]) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    monitor.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await monitor

    try:
        await state.writer.flush()
    except Exception:
        logger.exception("Failed to flush pending edits.")
    state.writer.close()

    state.reconciler.stop()
    await state.reconciler.wait_backfills()

    close = getattr(state.store, "close", None)
    if callable(close):
        try:
            close()
        except Exception:
            logger.debug("Store close failed.", exc_info=True)


async def _run(state: AppState) -> None:
    settings = state.settings
    state.reconciler.start(state.owner_id)

    monitor = asyncio.create_task(
        run_deadline_monitor(
            state,
            interval_seconds=settings.deadline_check_interval_seconds,
            window_hours=settings.reminder_window_hours,
            on_strategy=_on_strategy,
        )
    )
    try:
        await run_console_loop(state)
    finally:
        await _shutdown(state, monitor)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

    logger.info("Starting %s...", settings.app_name)

    state = create_initial_state(settings=settings, on_save_status=_on_save_status)

    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    logger.info("Bye.")


if __name__ == "__main__":
    main()
