# src/cara_tasks/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time.
- Every tunable of the engine (retry, debounce, reminder window) lives here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "CARA"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except ImportError:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class GenerationConfig:
    """Sampling/length knobs forwarded to the completion backend."""

    temperature: float = 0.7
    top_p: float = 0.8
    top_k: int = 40
    max_output_tokens: int = 250


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    owner_id: str

    # ---- LLM / OpenRouter ----
    openrouter_api_key: str | None
    openrouter_base_url: str
    llm_models: list[str]
    extra_headers: dict[str, str]
    generation: GenerationConfig

    # ---- Inference retry ----
    inference_max_attempts: int
    inference_retry_delay_seconds: float

    # ---- Engine timings ----
    debounce_seconds: float
    reminder_window_hours: float
    deadline_check_interval_seconds: float

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_db_path: Path

    @staticmethod
    def from_env() -> Settings:
        app_name = _env(_k("APP_NAME"), "cara") or "cara"
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        owner_id = _env(_k("OWNER_ID"), "local").strip() or "local"

        openrouter_api_key = _first_env(_k("OPENROUTER_API_KEY"), "OPENROUTER_API_KEY", default=None)
        openrouter_base_url = _env(_k("OPENROUTER_BASE_URL"), "https://openrouter.ai/api/v1")

        extra_headers = {
            "HTTP-Referer": _env(_k("HTTP_REFERER"), "https://example.com"),
            "X-Title": _env(_k("APP_TITLE"), app_name),
        }

        llm_models = _env_list(
            _k("LLM_MODELS"),
            [
                "google/gemini-2.0-flash-001",
                "qwen/qwen-2.5-72b-instruct:free",
                "deepseek/deepseek-chat-v3-0324:free",
            ],
        )

        generation = GenerationConfig(
            temperature=_env_float(_k("LLM_TEMPERATURE"), 0.7),
            top_p=_env_float(_k("LLM_TOP_P"), 0.8),
            top_k=_env_int(_k("LLM_TOP_K"), 40),
            max_output_tokens=_env_int(_k("LLM_MAX_TOKENS"), 250),
        )

        inference_max_attempts = max(1, _env_int(_k("INFERENCE_MAX_ATTEMPTS"), 3))
        inference_retry_delay_seconds = max(0.0, _env_float(_k("INFERENCE_RETRY_DELAY_SECONDS"), 2.0))

        debounce_seconds = max(0.0, _env_float(_k("DEBOUNCE_SECONDS"), 1.0))
        reminder_window_hours = _env_float(_k("REMINDER_WINDOW_HOURS"), 48.0)
        deadline_check_interval_seconds = _env_float(_k("DEADLINE_CHECK_INTERVAL_SECONDS"), 300.0)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/cara"))
        tasks_db_path = _env_path(_k("TASKS_DB_PATH"), data_dir / "tasks.sqlite3")

        return Settings(
            app_name=app_name,
            log_level=log_level,
            owner_id=owner_id,
            openrouter_api_key=openrouter_api_key,
            openrouter_base_url=openrouter_base_url,
            llm_models=llm_models,
            extra_headers=extra_headers,
            generation=generation,
            inference_max_attempts=inference_max_attempts,
            inference_retry_delay_seconds=inference_retry_delay_seconds,
            debounce_seconds=debounce_seconds,
            reminder_window_hours=reminder_window_hours,
            deadline_check_interval_seconds=deadline_check_interval_seconds,
            data_dir=data_dir,
            tasks_db_path=tasks_db_path,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
