# src/cara_tasks/llm/offline.py

from __future__ import annotations

from collections.abc import Sequence

from ..config import GenerationConfig
from ..core.ports import ChatMessage


class OfflineCompletionClient:
    """
    Offline deterministic completion backend used for demos when no external API is configured.

    Behavior:
    - Priority prompts -> "5"
    - Extraction prompts -> "null" (no task detected)
    - Step prompts -> three generic steps
    - Everything else -> a short offline notice
    """

    async def generate(self, prompt: str, config: GenerationConfig | None = None) -> str:
        p = (prompt or "").lower()

        if "rate its priority" in p:
            return "5"
        if "extract task information" in p:
            return "null"
        if "suggest 3 specific" in p:
            return (
                "Inspect the vehicle and confirm the issue.\n"
                "Order the required parts.\n"
                "Schedule the repair with the dealership."
            )
        if "one specific, actionable next step" in p:
            return "Call the dealership to schedule an inspection."
        return "Offline mode: no external AI is configured (set CARA_OPENROUTER_API_KEY)."

    def start_chat(self, history: Sequence[ChatMessage]) -> OfflineChatSession:
        return OfflineChatSession(history)


class OfflineChatSession:
    def __init__(self, history: Sequence[ChatMessage]) -> None:
        self.history = list(history)

    async def send(self, message: str) -> str:
        self.history.append({"role": "user", "content": message})
        reply = (
            "Offline demo mode: no external AI is configured.\n"
            "Set CARA_OPENROUTER_API_KEY (and CARA_LLM_MODELS) to enable real responses.\n\n"
            f"You said: {message}"
        )
        self.history.append({"role": "assistant", "content": reply})
        return reply
