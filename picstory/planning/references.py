"""
Reference-image summaries used to steer planning toward the user's characters.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Sequence

from picstory.common import AsyncCompletionCallable, acall_chat_completion
from picstory.sessions.models import ImageData

logger = logging.getLogger(__name__)

MAX_REFERENCE_IMAGES = 2


class LiteLLMReferenceSummarizer:
    """
    Describe up to two reference images with a multimodal chat model.

    Failures never propagate: planning continues without the description.
    """

    def __init__(
        self,
        *,
        model: str | None = None,
        api_key: str | None = None,
        completion_fn: AsyncCompletionCallable | None = None,
        max_tokens: int = 350,
        temperature: float = 0.2,
    ) -> None:
        self._model = (
            model
            or os.getenv("PICSTORY_VISION_MODEL")
            or os.getenv("LITELLM_VISION_MODEL")
            or "gpt-4o-mini"
        )
        self._api_key = api_key or os.getenv("PICSTORY_VISION_API_KEY") or os.getenv("OPENAI_API_KEY")
        self._completion_fn: AsyncCompletionCallable = completion_fn or acall_chat_completion
        self._max_tokens = max_tokens
        self._temperature = temperature

    async def describe(self, images: Sequence[ImageData]) -> str:
        selected = list(images)[:MAX_REFERENCE_IMAGES]
        if not selected:
            return ""

        content: list[dict[str, Any]] = [
            {
                "type": "text",
                "text": (
                    "Summarise these reference images for a children's illustrated book. "
                    "Describe the main characters (species, distinguishing features, signature props), "
                    "the environment and the visual style in 3-6 short bullet points. Use the format '- detail'."
                ),
            }
        ]
        content.extend(
            {"type": "image_url", "image_url": {"url": image.to_data_url()}} for image in selected
        )
        messages: Sequence[dict[str, Any]] = [
            {
                "role": "system",
                "content": (
                    "You are an illustration continuity director. Respond only with bullet points "
                    "describing what is visible. Do not speculate about names or backstory."
                ),
            },
            {"role": "user", "content": content},
        ]

        try:
            result = await self._completion_fn(
                model=self._model,
                messages=messages,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                api_key=self._api_key,
            )
            return result.text.strip()
        except Exception:
            logger.exception("Failed to summarise reference images; planning continues without them.")
            return ""
