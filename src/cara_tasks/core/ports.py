# src/cara_tasks/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the engine.

The engine depends on Protocols instead of concrete implementations.
This keeps the remote store and the completion backend swappable and makes testing easier.
"""

from collections.abc import Callable, Sequence
from typing import Any, Protocol

from ..config import GenerationConfig

ChatMessage = dict[str, str]
# OpenAI-style chat messages: {"role": "...", "content": "..."}.

SnapshotHandler = Callable[[list[Any]], None]
ErrorHandler = Callable[[Exception], None]


class ChatSession(Protocol):
    """Stateful conversation; each send() appends to the session history."""

    async def send(self, message: str) -> str: ...


class TextCompletion(Protocol):
    """Opaque text-completion capability (OpenAI/OpenRouter-compatible backends)."""

    async def generate(self, prompt: str, config: GenerationConfig | None = None) -> str: ...

    def start_chat(self, history: Sequence[ChatMessage]) -> ChatSession: ...


class Subscription(Protocol):
    """Handle returned by every "start listening" call. unsubscribe() is idempotent."""

    @property
    def active(self) -> bool: ...

    def unsubscribe(self) -> None: ...


class RemoteTaskStore(Protocol):
    """
    Remote, multi-writer task collection.

    Contract:
    - subscribe() delivers full snapshots (every task of the owner) in write order,
      and routes read failures to on_error
    - updated_at is assigned by the store on every write
    - write failures raise (callers map them to PersistenceError)
    """

    def subscribe(
            self,
            owner_id: str,
            on_snapshot: SnapshotHandler,
            on_error: ErrorHandler,
    ) -> Subscription: ...

    async def add_task(self, owner_id: str, fields: dict[str, Any]) -> str: ...

    async def update_task(self, task_id: str, changes: dict[str, Any]) -> None: ...

    async def delete_task(self, task_id: str) -> None: ...

    async def get_task(self, task_id: str) -> Any | None: ...

    async def next_order(self, owner_id: str) -> int: ...
