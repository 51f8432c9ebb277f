# src/cara_tasks/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (store, inference, engine components).
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import RemoteTaskStore, TextCompletion
from ..core.state import AppState, TaskCollection
from ..llm.client import OpenRouterCompletionClient
from ..llm.offline import OfflineCompletionClient
from ..llm.retry import RetryingInferenceClient
from ..tasks.debounce import DebouncedWriter, StatusListener
from ..tasks.priority import PriorityEstimator
from ..tasks.sync import SyncReconciler
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_backend(settings) -> TextCompletion:
    try:
        return OpenRouterCompletionClient(settings)
    except RuntimeError as e:
        # Fallback for demos / local runs without external services.
        logger.warning("%s Falling back to offline mode.", e)
        return OfflineCompletionClient()


def create_initial_state(
    *,
    settings=None,
    store: RemoteTaskStore | None = None,
    backend: TextCompletion | None = None,
    on_save_status: StatusListener | None = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings, store and backend injectable makes the app easier to test and avoids
    hidden global config reads. If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    if store is None:
        _ensure_local_dirs(settings)
        store = TaskStore(settings.tasks_db_path)

    if backend is None:
        backend = create_backend(settings)

    inference = RetryingInferenceClient(
        backend,
        max_attempts=settings.inference_max_attempts,
        delay_seconds=settings.inference_retry_delay_seconds,
        generation=settings.generation,
    )
    estimator = PriorityEstimator(inference)
    collection = TaskCollection()
    writer = DebouncedWriter(
        store,
        collection,
        delay_seconds=settings.debounce_seconds,
        on_status=on_save_status,
    )

    return AppState(
        settings=settings,
        owner_id=settings.owner_id,
        store=store,
        estimator=estimator,
        collection=collection,
        reconciler=SyncReconciler(store, collection, estimator, pending_overlay=writer.pending_overlay),
        writer=writer,
    )
