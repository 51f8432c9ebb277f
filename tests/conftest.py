# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from cara_tasks.cli.bootstrap import create_initial_state
from cara_tasks.config import GenerationConfig
from cara_tasks.core.state import AppState
from cara_tasks.tasks.task_store import TaskStore

from .fakes import FakeCompletion, FakeRemoteStore


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the engine components.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic (no env reads, no retry sleeps).
    """
    return SimpleNamespace(
        app_name="cara-test",
        owner_id="owner-1",
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        llm_models=["test/model"],
        generation=GenerationConfig(),
        inference_max_attempts=3,
        inference_retry_delay_seconds=0.0,
        debounce_seconds=0.05,
        reminder_window_hours=48,
        deadline_check_interval_seconds=300,
    )


@pytest.fixture()
def backend() -> FakeCompletion:
    return FakeCompletion(default="5")


@pytest.fixture()
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture()
def state(settings: SimpleNamespace, backend: FakeCompletion, remote: FakeRemoteStore) -> AppState:
    """AppState wired with the in-memory store and a deterministic completion backend."""
    return create_initial_state(settings=settings, store=remote, backend=backend)


@pytest.fixture()
def sqlite_state(settings: SimpleNamespace, backend: FakeCompletion) -> AppState:
    """
    AppState wired with the real SQLite TaskStore.

    NOTE: We keep the real store here because its subscription behavior
    is part of what we want to test.
    """
    return create_initial_state(
        settings=settings,
        store=TaskStore(settings.tasks_db_path),
        backend=backend,
    )
