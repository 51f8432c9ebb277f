# src/cara_tasks/tasks/priority.py

"""
AI-derived task insights.

Every call is a single prompt/response round trip through RetryingInferenceClient,
so InferenceFailure is the only error that can escape. Structured/numeric output
from the model is validated and clamped here, at the boundary:
- priority that is not a number -> DEFAULT_PRIORITY,
- out of range priority -> clamped into [1, 10],
- extraction without a parsable JSON object -> None ("no task", not an error).
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from ..core.ports import ChatMessage
from ..llm.retry import InferenceFailure, RetryingInferenceClient
from .task_models import DEFAULT_PRIORITY, Task, TaskDraft, TaskStatus, clamp_priority

logger = logging.getLogger(__name__)

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")
_STEP_NUMBERING_RE = re.compile(r"^\d+\.\s*")


@dataclass(slots=True, frozen=True)
class PriorityEstimate:
    priority: int
    suggestion: str | None = None


def _optional_lines(task: Task | TaskDraft) -> str:
    lines = []
    if task.dealership:
        lines.append(f"Dealership: {task.dealership}")
    if task.insurance_claim:
        lines.append(f"Insurance Claim: {task.insurance_claim}")
    return "\n".join(lines)


def _priority_prompt(task: Task | TaskDraft) -> str:
    return f"""Analyze this automotive repair task and rate its priority from 1-10 based on:
- Safety implications
- Vehicle drivability
- Customer impact
- Insurance claim requirements
- Time sensitivity

Task Title: {task.title}
Description: {task.description}
{_optional_lines(task)}

Respond with ONLY a number between 1-10."""


def _extraction_prompt(message: str) -> str:
    return f"""Extract task information from this message. If no task is described, return null.
Message: "{message}"

Respond with ONLY a valid JSON object containing these fields if a task is detected, or null if no task:
{{
  "title": "Brief task title",
  "description": "Detailed description",
  "dealership": "Dealership name if mentioned",
  "insuranceClaim": "Claim number if mentioned",
  "aiPriority": number from 1-10 based on urgency
}}"""


def parse_priority(text: str) -> int:
    """Leading integer of the response, clamped; anything else -> DEFAULT_PRIORITY."""
    m = _LEADING_INT_RE.match(text or "")
    if not m:
        return DEFAULT_PRIORITY
    return clamp_priority(int(m.group(1)))


def find_json_object(text: str) -> str | None:
    """Greedy brace match: from the first '{' to the last '}'."""
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last == -1 or last <= first:
        return None
    return text[first : last + 1]


def _opt_str(v: Any) -> str | None:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def parse_task_draft(text: str) -> TaskDraft | None:
    raw = find_json_object(text or "")
    if raw is None:
        return None

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.info("Task extraction: JSON parse error (%s); treating as no task", e)
        return None

    if not isinstance(parsed, dict):
        return None

    title = _opt_str(parsed.get("title"))
    description = _opt_str(parsed.get("description"))
    if not title or not description:
        return None

    raw_priority = parsed.get("aiPriority", parsed.get("priority"))
    return TaskDraft(
        title=title,
        description=description,
        dealership=_opt_str(parsed.get("dealership")),
        insurance_claim=_opt_str(parsed.get("insuranceClaim", parsed.get("insurance_claim"))),
        ai_priority=clamp_priority(raw_priority) if raw_priority else DEFAULT_PRIORITY,
    )


class PriorityEstimator:
    def __init__(self, inference: RetryingInferenceClient) -> None:
        self._inference = inference

    async def estimate_task(
        self,
        task: Task | TaskDraft,
        *,
        with_suggestion: bool = False,
    ) -> PriorityEstimate:
        """
        Rate a task 1..10. Non-numeric answers fall back to DEFAULT_PRIORITY.

        Raises InferenceFailure when the service itself is unavailable; callers that must
        never block (creation, back-fill) substitute DEFAULT_PRIORITY.
        """
        text = await self._inference.complete(_priority_prompt(task))
        priority = parse_priority(text)

        suggestion: str | None = None
        if with_suggestion:
            try:
                suggestion = await self.generate_next_action(task)
            except InferenceFailure as e:
                logger.warning("Next action suggestion failed for %r: %s", task.title, e)

        return PriorityEstimate(priority=priority, suggestion=suggestion)

    async def extract_task(self, message: str) -> TaskDraft | None:
        """Detect a task in free text. Misses (and inference failures) return None."""
        try:
            text = await self._inference.complete(_extraction_prompt(message))
        except InferenceFailure as e:
            logger.warning("Task extraction skipped: %s", e)
            return None

        draft = parse_task_draft(text)
        if draft is None:
            logger.debug("Task extraction: no task detected")
        return draft

    async def generate_next_action(self, task: Task | TaskDraft) -> str:
        prompt = f"""Given this task in an auto repair context:
Title: {task.title}
Description: {task.description}
{_optional_lines(task)}

Suggest ONE specific, actionable next step that would help complete this task. Keep it concise (max 100 characters) and practical."""
        text = await self._inference.complete(prompt)
        return _STEP_NUMBERING_RE.sub("", text.strip(), count=1).strip()

    async def summarize(self, description: str) -> str:
        prompt = (
            "As an automotive repair expert, provide a 2-3 sentence summary of this task, "
            f"focusing on key repair requirements and technical details: {description}"
        )
        return (await self._inference.complete(prompt)).strip()

    async def suggest_steps(self, description: str) -> list[str]:
        prompt = f"""As an automotive repair expert, suggest 3 specific, actionable steps to complete this repair task. Focus on technical procedures and safety requirements: {description}

Format each step as a clear, concise instruction."""
        text = await self._inference.complete(prompt)
        return [line.strip() for line in text.splitlines() if line.strip()]

    async def generate_completion_strategy(self, task: Task, similar_tasks: Sequence[Task]) -> str:
        context = "\n".join(
            f"{t.title}: {t.description}" for t in similar_tasks if t.status == TaskStatus.COMPLETED
        )
        deadline = task.deadline.strftime("%Y-%m-%d") if task.deadline else "No deadline"
        prompt = f"""Based on these similar completed tasks:
{context}

Generate a completion strategy for this task:
Title: {task.title}
Description: {task.description}
Deadline: {deadline}

Provide a specific strategy considering time constraints and past successful approaches."""
        return (await self._inference.complete(prompt)).strip()

    async def chat(self, message: str, history: Sequence[ChatMessage] = ()) -> str:
        return (await self._inference.chat(message, history)).strip()
