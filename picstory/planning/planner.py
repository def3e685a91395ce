"""
Service layer for producing page plans via LiteLLM-compatible models.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Mapping

from picstory.common import AsyncCompletionCallable, ChatResult, acall_chat_completion
from picstory.sessions.errors import PlanShapeMismatch
from picstory.sessions.models import PagePlan, Plan

from .prompting import PlanningPrompt, build_planning_prompt

logger = logging.getLogger(__name__)


def _resolve_model(model: str | None) -> str:
    return (
        model
        or os.getenv("PICSTORY_PLANNING_MODEL")
        or os.getenv("LITELLM_PLANNING_MODEL")
        or os.getenv("LITELLM_MODEL")
        or "gpt-4.1-mini"
    )


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def parse_plan(text: str, page_count: int) -> Plan:
    """
    Validate the model's JSON plan and normalise it.

    Items are re-indexed 1..N in the order returned. Raises
    :class:`PlanShapeMismatch` when the cover prompt is missing or the number of
    items differs from ``page_count``.
    """
    try:
        payload = json.loads(_strip_code_fence(text))
    except json.JSONDecodeError as exc:
        raise PlanShapeMismatch("Planning backend returned invalid JSON.") from exc
    if not isinstance(payload, dict):
        raise PlanShapeMismatch("Planning backend returned a non-object JSON payload.")

    cover_prompt = payload.get("coverPagePrompt") or payload.get("cover_prompt")
    if not isinstance(cover_prompt, str) or not cover_prompt.strip():
        raise PlanShapeMismatch("Missing coverPagePrompt in planning response.")

    raw_items = payload.get("items")
    items = raw_items if isinstance(raw_items, list) else []
    if len(items) != page_count:
        raise PlanShapeMismatch(f"Expected {page_count} interior page prompts, got {len(items)}.")

    plans: list[PagePlan] = []
    for position, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise PlanShapeMismatch(f"Plan item {position} is not an object.")
        prompt = str(item.get("prompt") or "").strip()
        if not prompt:
            raise PlanShapeMismatch(f"Plan item {position} has an empty prompt.")
        caption = item.get("caption")
        plans.append(
            PagePlan(
                index=position,
                prompt=prompt,
                caption=str(caption).strip() if caption else None,
            )
        )

    return Plan(cover_prompt=cover_prompt.strip(), items=tuple(plans))


class LiteLLMPlanner:
    """
    Planning backend that asks a chat model for a JSON page plan.

    Parameters
    ----------
    kind:
        Content kind whose planning instructions are used.
    api_key:
        Falls back to ``OPENAI_API_KEY`` and then ``LITELLM_API_KEY``.
    model:
        Falls back to ``PICSTORY_PLANNING_MODEL``, ``LITELLM_PLANNING_MODEL``,
        ``LITELLM_MODEL`` and finally ``gpt-4.1-mini``.
    completion_fn:
        Async completion callable; defaults to :func:`acall_chat_completion`.
    """

    def __init__(
        self,
        *,
        kind: str = "coloring_book",
        api_key: str | None = None,
        model: str | None = None,
        completion_fn: AsyncCompletionCallable | None = None,
        temperature: float = 0.6,
        max_output_tokens: int = 4000,
    ) -> None:
        self._kind = kind
        self._api_key = api_key or os.getenv("OPENAI_API_KEY") or os.getenv("LITELLM_API_KEY")
        self._model = _resolve_model(model)
        self._completion_fn: AsyncCompletionCallable = completion_fn or acall_chat_completion
        self._temperature = temperature
        self._max_output_tokens = max_output_tokens

    @property
    def model(self) -> str:
        """Return the model identifier in use."""
        return self._model

    async def plan(
        self,
        title: str,
        theme: str,
        page_count: int,
        options: Mapping[str, Any],
    ) -> Plan:
        prompt: PlanningPrompt = build_planning_prompt(
            kind=self._kind,
            title=title,
            theme=theme,
            page_count=page_count,
            options=options,
        )
        messages = [
            {"role": "system", "content": prompt.system},
            {"role": "user", "content": prompt.user},
        ]

        result: ChatResult = await self._completion_fn(
            model=self._model,
            messages=messages,
            temperature=self._temperature,
            max_tokens=self._max_output_tokens,
            api_key=self._api_key,
            response_format={"type": "json_object"},
        )
        if not result.text:
            raise PlanShapeMismatch("Planning backend returned empty content.")

        plan = parse_plan(result.text, page_count)
        logger.debug("Planned %s interior pages for '%s'.", len(plan.items), title)
        return plan
