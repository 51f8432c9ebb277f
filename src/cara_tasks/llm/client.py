# src/cara_tasks/llm/client.py

from __future__ import annotations

import logging
import os
import time
from collections.abc import Sequence
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from ..config import GenerationConfig, Settings
from ..core.persona import get_system_prompt
from ..core.ports import ChatMessage
from .retry import NonRetryableError

logger = logging.getLogger(__name__)

_BAD_MODELS: dict[str, float] = {}  # model -> retry_at (monotonic)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _timeout_from_env() -> httpx.Timeout:
    """
    Timeouts are configurable via env so a slow model cannot hang an engine call forever.

    Defaults:
    - connect timeout: 5s
    - read timeout: 30s
    """
    connect_s = _env_float("CARA_LLM_CONNECT_TIMEOUT_SECONDS", 5.0)
    read_s = _env_float("CARA_LLM_READ_TIMEOUT_SECONDS", 30.0)
    return httpx.Timeout(connect=connect_s, read=read_s, write=10.0, pool=connect_s)


def _is_auth_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return True
    return exc.__class__.__name__ in {"UnauthorizedError"}


def _is_rate_limit_error(exc: Exception) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    return exc.__class__.__name__ in {"TooManyRequestsError"}


def _is_connection_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.APIConnectionError, httpx.TimeoutException)):
        return True
    return exc.__class__.__name__ in {"Timeout", "ConnectTimeout", "ReadTimeout", "WriteTimeout"}


def _is_not_found_error(exc: Exception) -> bool:
    return isinstance(exc, openai.NotFoundError)


def friendly_llm_error_message(err: Exception) -> str:
    msg = str(err).strip() or "LLM error."
    if "LLM API key is not set" in msg:
        return "AI is not configured (missing API key). Set CARA_OPENROUTER_API_KEY in .env."
    if "LLM model list is empty" in msg:
        return "AI is not configured (no models). Set CARA_LLM_MODELS in .env."
    if "LLM base URL is not set" in msg:
        return "AI is not configured (missing base URL). Set CARA_OPENROUTER_BASE_URL in .env."
    if "LLM authentication failed" in msg:
        return "AI rejected the API key. Check CARA_OPENROUTER_API_KEY in .env."
    return msg


class OpenRouterCompletionClient:
    """
    OpenAI-compatible completion backend (OpenRouter by default).

    Behavior:
    - Tries models in the order from settings (CARA_LLM_MODELS).
    - 404 (model not available) -> model is parked for an hour, try next.
    - Rate limit / network issues -> try next.
    - Auth issues -> fail fast.
    SDK retries are disabled: retrying is RetryingInferenceClient's job.
    """

    def __init__(self, settings: Settings) -> None:
        api_key = settings.openrouter_api_key
        base_url = settings.openrouter_base_url or ""

        if not api_key or not str(api_key).strip():
            raise RuntimeError("LLM API key is not set. Set CARA_OPENROUTER_API_KEY in your .env.")
        if not base_url.strip():
            raise RuntimeError("LLM base URL is not set. Set CARA_OPENROUTER_BASE_URL in your .env.")

        self._models = [m.strip() for m in settings.llm_models if m and m.strip()]
        if not self._models:
            raise RuntimeError("LLM model list is empty. Set CARA_LLM_MODELS in your .env.")

        self._headers = dict(settings.extra_headers or {})
        self._generation = settings.generation
        self._client = AsyncOpenAI(
            base_url=base_url,
            api_key=str(api_key),
            timeout=_timeout_from_env(),
            max_retries=0,
        )

    async def generate(self, prompt: str, config: GenerationConfig | None = None) -> str:
        return await self._complete([{"role": "user", "content": prompt}], config)

    def start_chat(self, history: Sequence[ChatMessage]) -> OpenRouterChatSession:
        return OpenRouterChatSession(self, history)

    async def _complete(
        self,
        messages: list[dict[str, str]],
        config: GenerationConfig | None = None,
    ) -> str:
        cfg = config or self._generation
        last_error: Exception | None = None
        now = time.monotonic()

        for model in self._models:
            retry_at = _BAD_MODELS.get(model)
            if retry_at is not None and retry_at > now:
                continue

            logger.debug("LLM: trying model=%s", model)
            t0 = time.monotonic()
            try:
                resp = await self._client.chat.completions.create(
                    model=model,
                    messages=messages,  # type: ignore[arg-type]
                    temperature=cfg.temperature,
                    top_p=cfg.top_p,
                    max_tokens=cfg.max_output_tokens,
                    extra_body={"top_k": cfg.top_k},
                    extra_headers=self._headers or None,
                )
            except Exception as e:
                last_error = e

                if _is_auth_error(e):
                    raise NonRetryableError(
                        "LLM authentication failed. Check your API key (CARA_OPENROUTER_API_KEY)."
                    ) from e

                if _is_not_found_error(e):
                    _BAD_MODELS[model] = time.monotonic() + 3600.0
                    logger.info("LLM: model not available (404): %s", model)
                elif _is_rate_limit_error(e):
                    logger.info("LLM: rate-limited on model=%s, trying next", model)
                elif _is_connection_error(e):
                    logger.info("LLM: network/timeout error on model=%s, trying next", model)
                else:
                    logger.info("LLM: error on model=%s (%s), trying next", model, e.__class__.__name__)
                continue

            content = _first_content(resp)
            if content:
                logger.debug("LLM: completed with model=%s (%.2fs)", model, time.monotonic() - t0)
                return content

            last_error = RuntimeError(f"Model returned no content: {model}")

        if last_error is not None:
            if _is_rate_limit_error(last_error):
                raise RuntimeError("LLM is rate-limited. Try again later.") from last_error
            if _is_connection_error(last_error):
                raise RuntimeError("LLM network/timeout error. Try again later.") from last_error
            raise RuntimeError(f"All LLM models failed: {last_error}") from last_error

        raise RuntimeError("All LLM models failed.")


class OpenRouterChatSession:
    def __init__(self, client: OpenRouterCompletionClient, history: Sequence[ChatMessage]) -> None:
        self._client = client
        self.history: list[ChatMessage] = [
            {"role": str(m.get("role", "user")), "content": str(m.get("content", ""))}
            for m in history
        ]

    async def send(self, message: str) -> str:
        messages = [{"role": "system", "content": get_system_prompt()}, *self.history]
        messages.append({"role": "user", "content": message})
        reply = await self._client._complete(messages)
        self.history.append({"role": "user", "content": message})
        self.history.append({"role": "assistant", "content": reply})
        return reply


def _first_content(resp: Any) -> str:
    try:
        content = resp.choices[0].message.content
    except (AttributeError, IndexError, TypeError):
        return ""
    return content or ""
