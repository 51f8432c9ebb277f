# src/cara_tasks/llm/retry.py

"""
Bounded retry around a single text-completion round trip.

Every inference call in the app goes through RetryingInferenceClient:
- up to max_attempts calls,
- an empty (after strip) response counts as a failure,
- fixed delay between attempts (no exponential backoff, no jitter),
- a NonRetryableError from the backend stops retrying at once,
- InferenceFailure is the only error that leaves this module.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

from ..config import GenerationConfig
from ..core.ports import ChatMessage, TextCompletion

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
DELAY_SECONDS = 2.0


class InferenceFailure(RuntimeError):
    """All attempts of an inference call failed. Retryable by the user unless retryable is False."""

    def __init__(self, attempts: int, last_error: str, *, retryable: bool = True) -> None:
        super().__init__(f"AI request failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error
        self.retryable = retryable


class NonRetryableError(RuntimeError):
    """Backend says retrying cannot help (bad credentials, missing configuration)."""


class EmptyResponseError(RuntimeError):
    pass


class RetryingInferenceClient:
    def __init__(
        self,
        backend: TextCompletion,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        delay_seconds: float = DELAY_SECONDS,
        generation: GenerationConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._max_attempts = max(1, int(max_attempts))
        self._delay = max(0.0, float(delay_seconds))
        self._generation = generation
        self._sleep = sleep

    async def complete(self, prompt: str) -> str:
        return await self._with_retry(lambda: self._backend.generate(prompt, self._generation))

    async def chat(self, message: str, history: Sequence[ChatMessage] = ()) -> str:
        """One chat turn on a fresh session seeded with history (per attempt)."""

        async def _send() -> str:
            session = self._backend.start_chat(list(history))
            return await session.send(message)

        return await self._with_retry(_send)

    async def _with_retry(self, operation: Callable[[], Awaitable[str]]) -> str:
        last_error = "unknown error"

        for attempt in range(1, self._max_attempts + 1):
            try:
                text = await operation()
                if text is None or not str(text).strip():
                    raise EmptyResponseError("Empty response from AI")
                return str(text)
            except asyncio.CancelledError:
                raise
            except NonRetryableError as e:
                logger.error("AI request failed permanently: %s", e)
                raise InferenceFailure(attempt, str(e), retryable=False) from e
            except Exception as e:
                last_error = str(e).strip() or e.__class__.__name__
                logger.warning(
                    "AI request attempt %d/%d failed: %s", attempt, self._max_attempts, last_error
                )

            if attempt < self._max_attempts:
                await self._sleep(self._delay)

        raise InferenceFailure(self._max_attempts, last_error)
