"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

import pytest
from PIL import Image

from picstory.pdf_generation import DocumentAssembler
from picstory.pipeline import GenerationQueue, WorkflowEngine, WorkflowSettings
from picstory.sessions import (
    FileSessionStore,
    GenerationFailure,
    ImageData,
    InMemoryQuotaLedger,
    LocalArtifactStore,
    LocalDocumentStore,
    PagePlan,
    Plan,
    PrintSpec,
)


def make_png(width: int = 64, height: int = 48, color: tuple[int, int, int] = (200, 40, 40)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_jpeg(width: int = 64, height: int = 48, color: tuple[int, int, int] = (40, 40, 200)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="JPEG")
    return buffer.getvalue()


def media_boxes(pdf: bytes) -> list[tuple[float, float]]:
    """Page sizes in points, in page order, read from the MediaBox entries."""
    pattern = rb"/MediaBox\s*\[\s*0\s+0\s+([\d.]+)\s+([\d.]+)\s*\]"
    return [(float(width), float(height)) for width, height in re.findall(pattern, pdf)]


@dataclass
class FakePlanner:
    """Planner returning deterministic prompts; ``item_delta`` breaks the plan shape."""

    item_delta: int = 0
    cover_prompt: str = "A colourful cover with a friendly fox"
    calls: list[dict[str, Any]] = field(default_factory=list)

    async def plan(self, title: str, theme: str, page_count: int, options: Mapping[str, Any]) -> Plan:
        self.calls.append({"title": title, "theme": theme, "page_count": page_count, "options": dict(options)})
        items = tuple(
            PagePlan(index=position, prompt=f"{theme} - scene {position}", caption=f"Caption {position}")
            for position in range(1, page_count + self.item_delta + 1)
        )
        return Plan(cover_prompt=self.cover_prompt, items=items)


@dataclass
class RenderCall:
    prompt: str
    references: tuple[ImageData, ...]
    print_spec: PrintSpec | None


@dataclass
class FakeImageBackend:
    """
    Renders a solid PNG per call, cycling colours so outputs are distinguishable.

    Set ``gate`` to hold every call until the event is set; ``fail_when`` makes
    calls whose prompt matches raise ``GenerationFailure``.
    """

    gate: asyncio.Event | None = None
    fail_when: Callable[[str], bool] | None = None
    calls: list[RenderCall] = field(default_factory=list)
    waiting: int = 0
    produced: list[bytes] = field(default_factory=list)

    async def generate(
        self,
        prompt: str,
        references: Sequence[ImageData],
        print_spec: PrintSpec | None = None,
    ) -> ImageData:
        self.calls.append(RenderCall(prompt=prompt, references=tuple(references), print_spec=print_spec))
        if self.gate is not None:
            self.waiting += 1
            await self.gate.wait()
        if self.fail_when is not None and self.fail_when(prompt):
            raise GenerationFailure("backend returned no image")
        shade = (len(self.produced) * 37) % 256
        data = make_png(color=(shade, 120, 255 - shade))
        self.produced.append(data)
        return ImageData(data=data, media_type="image/png")


@dataclass
class FakeSummarizer:
    description: str = "- an orange fox with a blue scarf"
    calls: list[int] = field(default_factory=list)

    async def describe(self, images: Sequence[ImageData]) -> str:
        self.calls.append(len(images))
        return self.description


@dataclass
class FakeEnhancer:
    calls: list[tuple[str, str, str]] = field(default_factory=list)

    async def enhance(self, text: str, *, kind: str, target: str) -> str:
        self.calls.append((text, kind, target))
        return f"Enhanced: {text}"


@dataclass
class Harness:
    engine: WorkflowEngine
    planner: FakePlanner
    images: FakeImageBackend
    summarizer: FakeSummarizer
    enhancer: FakeEnhancer
    ledger: InMemoryQuotaLedger
    sessions: FileSessionStore
    artifacts: LocalArtifactStore
    documents: LocalDocumentStore
    root: Path


@pytest.fixture
def make_harness(tmp_path: Path) -> Callable[..., Harness]:
    def _build(policy: str = "coloring_book", *, balances: Mapping[str, int] | None = None, **overrides: Any) -> Harness:
        settings = WorkflowSettings(storage_root=tmp_path, max_concurrency=2, default_kind=policy)
        sessions = FileSessionStore(settings.sessions_dir)
        artifacts = LocalArtifactStore(settings.sessions_dir)
        documents = LocalDocumentStore(settings.documents_dir)
        planner = overrides.pop("planner", FakePlanner())
        images = overrides.pop("images", FakeImageBackend())
        summarizer = FakeSummarizer()
        enhancer = FakeEnhancer()
        ledger = InMemoryQuotaLedger(balances)
        engine = WorkflowEngine(
            policy=policy,
            settings=settings,
            session_store=sessions,
            artifact_store=artifacts,
            document_store=documents,
            image_backend=images,
            planner=planner,
            reference_summarizer=summarizer,
            prompt_enhancer=enhancer,
            assembler=DocumentAssembler(),
            ledger=ledger,
            queue=GenerationQueue(settings.max_concurrency),
            **overrides,
        )
        return Harness(
            engine=engine,
            planner=planner,
            images=images,
            summarizer=summarizer,
            enhancer=enhancer,
            ledger=ledger,
            sessions=sessions,
            artifacts=artifacts,
            documents=documents,
            root=tmp_path,
        )

    return _build


@pytest.fixture
def harness(make_harness: Callable[..., Harness]) -> Harness:
    return make_harness()
