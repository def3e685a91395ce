"""
Integration with Replicate for PicStory page renders.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Iterable as IterableABC
from io import BytesIO
from typing import Any, BinaryIO, Callable, Sequence

import replicate
import requests

from picstory.sessions.errors import GenerationFailure
from picstory.sessions.models import ImageData, PrintSpec, sniff_media_type

from .prompting import build_print_instructions

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "google/nano-banana"
MAX_INLINE_REFERENCES = 3

_ASPECT_RATIOS = {"square": "1:1", "portrait": "3:4", "landscape": "4:3"}


def _aspect_ratio(print_spec: PrintSpec | None) -> str:
    spec = print_spec or PrintSpec()
    return _ASPECT_RATIOS[spec.orientation]


def _build_nano_banana_input(
    *,
    prompt: str,
    image_inputs: Sequence[BinaryIO],
    print_spec: PrintSpec | None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt,
        "output_format": "png",
    }
    if image_inputs:
        payload["image_input"] = list(image_inputs)
    return payload


def _build_flux_kontext_input(
    *,
    prompt: str,
    image_inputs: Sequence[BinaryIO],
    print_spec: PrintSpec | None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt,
        "output_format": "png",
        "safety_tolerance": 2,
        "prompt_upsampling": True,
        "aspect_ratio": _aspect_ratio(print_spec),
    }
    # Kontext takes a single input image; the first reference has priority.
    if image_inputs:
        payload["input_image"] = image_inputs[0]
    return payload


_MODEL_INPUT_BUILDERS: dict[str, Callable[..., dict[str, Any]]] = {
    "google/nano-banana": _build_nano_banana_input,
    "black-forest-labs/flux-kontext-pro": _build_flux_kontext_input,
    "black-forest-labs/flux-kontext-max": _build_flux_kontext_input,
}


def _build_replicate_input_payload(
    *,
    model_identifier: str,
    prompt: str,
    image_inputs: Sequence[BinaryIO],
    print_spec: PrintSpec | None,
) -> dict[str, Any]:
    normalized_identifier = model_identifier.strip().lower()
    builder = _MODEL_INPUT_BUILDERS.get(normalized_identifier)
    if builder is None and ":" in normalized_identifier:
        base_identifier = normalized_identifier.split(":", maxsplit=1)[0]
        builder = _MODEL_INPUT_BUILDERS.get(base_identifier)
    if builder is None:
        supported_models = ", ".join(sorted(set(_MODEL_INPUT_BUILDERS)))
        raise ValueError(
            "Model identifier "
            f"'{model_identifier}' is not configured with a default input payload. "
            f"Supported models: {supported_models}."
        )

    return builder(prompt=prompt, image_inputs=image_inputs, print_spec=print_spec)


def select_inline_references(
    references: Sequence[ImageData],
    limit: int = MAX_INLINE_REFERENCES,
) -> list[ImageData]:
    """
    Keep the first reference (highest priority) and the most recent ones.

    With more than ``limit`` references the result is the first, penultimate and
    last entries, without duplicates.
    """
    if len(references) <= limit:
        return list(references)
    picked = [references[0], *references[-(limit - 1):]]
    selected: list[ImageData] = []
    for reference in picked:
        if not any(reference is existing for existing in selected):
            selected.append(reference)
    return selected


class ReplicateImageGenerator:
    """
    Async image backend built on the Replicate client.

    Parameters
    ----------
    api_token:
        Replicate API token. Falls back to ``REPLICATE_API_TOKEN`` environment variable.
    model_identifier:
        Model string in the ``owner/model[:version]`` format. Falls back to
        ``REPLICATE_MODEL`` and then to ``google/nano-banana``.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    request_timeout:
        Timeout in seconds for downloading outputs returned as plain URLs.
    """

    def __init__(
        self,
        *,
        api_token: str | None = None,
        model_identifier: str | None = None,
        client: replicate.Client | None = None,
        request_timeout: float = 60.0,
        **model_kwargs: Any,
    ) -> None:
        self._api_token = api_token or os.getenv("REPLICATE_API_TOKEN")
        if not self._api_token and not client:
            raise ValueError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN or pass api_token."
            )

        self._model_identifier = model_identifier or os.getenv("REPLICATE_MODEL") or DEFAULT_MODEL
        self._client = client or replicate.Client(api_token=self._api_token)
        self._request_timeout = request_timeout
        self._model_kwargs = model_kwargs

    @property
    def model_identifier(self) -> str:
        """Return the model identifier currently used."""
        return self._model_identifier

    async def generate(
        self,
        prompt: str,
        references: Sequence[ImageData],
        print_spec: PrintSpec | None = None,
    ) -> ImageData:
        """
        Render one page.

        Parameters
        ----------
        prompt:
            Final page prompt including style directives.
        references:
            Continuity references in priority order; at most three are sent inline.
        print_spec:
            Optional print target, rendered into standing print instructions.

        Returns
        -------
        ImageData
            The single rendered image.
        """
        full_prompt = build_print_instructions(print_spec) + "\n\n" + prompt
        selected = select_inline_references(references)
        image_inputs = [BytesIO(reference.data) for reference in selected]

        replicate_input = _build_replicate_input_payload(
            model_identifier=self._model_identifier,
            prompt=full_prompt,
            image_inputs=image_inputs,
            print_spec=print_spec,
        )
        # Allow the caller to tweak model-specific knobs (e.g., seed).
        replicate_input.update(self._model_kwargs)

        try:
            output = await self._client.async_run(self._model_identifier, input=replicate_input)
        except Exception as exc:
            raise GenerationFailure(
                f"Replicate run failed (model={self._model_identifier}): {exc}"
            ) from exc

        images = await self._collect_images(output)
        if not images:
            raise GenerationFailure("Replicate did not return any image output.")
        if len(images) > 1:
            raise GenerationFailure(f"Replicate returned {len(images)} images; expected exactly one.")
        return images[0]

    async def _collect_images(self, raw: Any) -> list[ImageData]:
        if raw is None:
            return []

        if isinstance(raw, AsyncIterator):
            items = [item async for item in raw]
        elif isinstance(raw, (str, bytes)) or hasattr(raw, "aread"):
            items = [raw]
        elif isinstance(raw, IterableABC):
            items = list(raw)
        else:
            items = [raw]

        images: list[ImageData] = []
        for item in items:
            data = await self._read_output(item)
            if data:
                images.append(ImageData(data=data, media_type=sniff_media_type(data)))
        return images

    async def _read_output(self, item: Any) -> bytes | None:
        if item is None:
            return None
        if isinstance(item, bytes):
            return item
        if hasattr(item, "aread"):
            return await item.aread()
        url = str(item).strip()
        if url.startswith("data:"):
            return ImageData.from_payload(data_url=url).data
        if not url.lower().startswith(("http://", "https://")):
            logger.warning("Ignoring non-URL Replicate output: %.80s", url)
            return None
        try:
            return await asyncio.to_thread(self._download, url)
        except requests.RequestException as exc:
            raise GenerationFailure(f"Failed to download Replicate output {url}: {exc}") from exc

    def _download(self, url: str) -> bytes:
        response = requests.get(url, timeout=self._request_timeout)
        response.raise_for_status()
        return response.content
