"""
Prompt enhancement through a LiteLLM-compatible text model.
"""

from __future__ import annotations

import os

from picstory.common import AsyncCompletionCallable, acall_chat_completion
from picstory.sessions.errors import GenerationFailure, ValidationError

from .prompting import build_enhancer_instructions


class LiteLLMPromptEnhancer:
    """Rewrite theme, cover and interior prompts into production-ready image prompts."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        completion_fn: AsyncCompletionCallable | None = None,
        temperature: float = 0.5,
        max_tokens: int = 300,
    ) -> None:
        self._api_key = api_key or os.getenv("OPENAI_API_KEY") or os.getenv("LITELLM_API_KEY")
        self._model = (
            model
            or os.getenv("PICSTORY_ENHANCER_MODEL")
            or os.getenv("LITELLM_MODEL")
            or "gpt-4.1-mini"
        )
        self._completion_fn: AsyncCompletionCallable = completion_fn or acall_chat_completion
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def enhance(self, text: str, *, kind: str, target: str = "theme") -> str:
        if not text or not text.strip():
            raise ValidationError("text is required")
        try:
            instructions = build_enhancer_instructions(kind, target)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        try:
            result = await self._completion_fn(
                model=self._model,
                messages=[
                    {"role": "system", "content": instructions},
                    {"role": "user", "content": text.strip()},
                ],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                api_key=self._api_key,
            )
        except Exception as exc:
            raise GenerationFailure(f"Failed to enhance prompt: {exc}") from exc

        if not result.text:
            raise GenerationFailure("Failed to enhance prompt: empty response.")
        return result.text.strip()
