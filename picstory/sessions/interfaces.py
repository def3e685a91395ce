"""
Contracts for the collaborators the workflow engine depends on.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence

from .models import ImageData, Plan, PrintSpec


class PlanningBackend(Protocol):
    async def plan(
        self,
        title: str,
        theme: str,
        page_count: int,
        options: Mapping[str, Any],
    ) -> Plan:
        """Return a cover prompt plus ``page_count`` interior prompts."""


class ReferenceSummarizer(Protocol):
    async def describe(self, images: Sequence[ImageData]) -> str:
        """Summarise up to two reference images; return "" when unavailable."""


class PromptEnhancer(Protocol):
    async def enhance(self, text: str, *, kind: str, target: str) -> str:
        """Rewrite a user prompt into a clearer image prompt."""


class ImageBackend(Protocol):
    async def generate(
        self,
        prompt: str,
        references: Sequence[ImageData],
        print_spec: PrintSpec | None = None,
    ) -> ImageData:
        """Render exactly one image or raise ``GenerationFailure``."""


class ArtifactStore(Protocol):
    async def write(self, session_id: str, index: int, image: ImageData) -> str:
        """Persist bytes and return a reference usable with ``read``."""

    async def read(self, reference: str) -> bytes:
        """Return the bytes behind a reference."""

    async def discard(self, reference: str) -> None:
        """Remove an artifact that lost a compare-and-swap."""


class DocumentStore(Protocol):
    async def save(self, data: bytes, metadata: Mapping[str, Any]) -> str:
        """Persist an assembled document and return its identifier."""

    def path(self, document_id: str) -> Path:
        ...

    async def list_recent(self, owner_id: str | None = None, limit: int = 10) -> list[dict[str, Any]]:
        """Newest documents first, optionally for one owner."""


class QuotaLedger(Protocol):
    async def charge(self, account_id: str, amount: int) -> int:
        """Deduct credits and return the remaining balance."""
