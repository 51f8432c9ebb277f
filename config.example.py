# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Keep them in .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "CARA_APP_NAME": "App display name (default: cara).",
    "CARA_LOG_LEVEL": "Console logging level (default: INFO).",
    "CARA_OWNER_ID": "User whose tasks are synchronized (default: local).",
    # LLM / OpenRouter
    "CARA_OPENROUTER_API_KEY": "OpenRouter API key (without it the app runs in offline mode).",
    "CARA_OPENROUTER_BASE_URL": "OpenRouter base URL (default: https://openrouter.ai/api/v1).",
    "CARA_LLM_MODELS": "Comma/space separated list of models to try in order.",
    "CARA_HTTP_REFERER": "Optional OpenRouter metadata header.",
    "CARA_APP_TITLE": "Optional OpenRouter metadata header title.",
    # Generation
    "CARA_LLM_TEMPERATURE": "Sampling temperature (default: 0.7).",
    "CARA_LLM_TOP_P": "Nucleus sampling (default: 0.8).",
    "CARA_LLM_TOP_K": "Top-k sampling, sent as an extra body field (default: 40).",
    "CARA_LLM_MAX_TOKENS": "Max output tokens per request (default: 250).",
    # Inference retry
    "CARA_INFERENCE_MAX_ATTEMPTS": "Attempts per AI request (default: 3).",
    "CARA_INFERENCE_RETRY_DELAY_SECONDS": "Fixed delay between attempts (default: 2.0).",
    # Engine timings
    "CARA_DEBOUNCE_SECONDS": "Quiet period before a text edit is saved (default: 1.0).",
    "CARA_REMINDER_WINDOW_HOURS": "Deadline reminder window (default: 48).",
    "CARA_DEADLINE_CHECK_INTERVAL_SECONDS": "Deadline monitor poll interval (default: 300).",
    # Paths (gitignored)
    "CARA_DATA_DIR": "Local data directory (default: .local/cara).",
    "CARA_TASKS_DB_PATH": "TaskStore SQLite path (default: <data_dir>/tasks.sqlite3).",
}
