"""Tests for continuity context selection."""

from __future__ import annotations

import asyncio

from conftest import make_png
from picstory.pipeline import ContextWindowSelector, prior_pages
from picstory.sessions import BillingMode, ImageData, InMemorySessionStore


class DictArtifactStore:
    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}

    async def write(self, session_id: str, index: int, image: ImageData) -> str:
        reference = f"mem://{session_id}/{index}/{len(self.blobs)}"
        self.blobs[reference] = image.data
        return reference

    async def read(self, reference: str) -> bytes:
        return self.blobs[reference]

    async def discard(self, reference: str) -> None:
        self.blobs.pop(reference, None)


async def _populated_session(store, artifacts, populated: list[int], page_count: int = 5):
    session = await store.create(
        kind="storybook",
        title="t",
        base_prompt="p",
        page_count=page_count,
        billing_mode=BillingMode.PER_PAGE,
        cover_prompt="cover",
        page_prompts=[f"page {index}" for index in range(1, page_count + 1)],
    )
    for index in populated:
        page = session.page(index)
        page.artifact = await artifacts.write(session.id, index, ImageData(data=bytes([index]) * 4))
        page.media_type = "image/png"
    return await store.save(session)


def test_prior_pages_keeps_most_recent_in_order() -> None:
    store = InMemorySessionStore()
    artifacts = DictArtifactStore()

    session = asyncio.run(_populated_session(store, artifacts, [0, 1, 3, 4]))

    assert [page.index for page in prior_pages(session, 5, 2)] == [3, 4]
    assert [page.index for page in prior_pages(session, 5, 10)] == [1, 3, 4]
    assert [page.index for page in prior_pages(session, 5, 0)] == [4]
    assert prior_pages(session, 0, 3) == []


def test_select_orders_anchor_explicit_history_and_context() -> None:
    store = InMemorySessionStore()
    artifacts = DictArtifactStore()
    selector = ContextWindowSelector(session_store=store, artifact_store=artifacts)
    anchor = ImageData(data=b"anchor")
    explicit = ImageData(data=b"explicit")
    context = ImageData(data=make_png(), media_type="image/png")

    async def scenario():
        session = await _populated_session(store, artifacts, [0, 1, 2])
        session = await store.store_context_images(session.id, [context])
        return await selector.select(session, 3, 2, explicit=explicit, anchor=anchor)

    window = asyncio.run(scenario())

    assert [ref.data for ref in window.references] == [
        b"anchor",
        b"explicit",
        bytes([1]) * 4,
        bytes([2]) * 4,
        context.data,
    ]
    assert window.prior_indices == (1, 2)
    assert window.context_image_count == 1
    assert window.has_anchor and window.has_explicit
    assert len(window) == 5


def test_unreadable_artifacts_are_skipped() -> None:
    store = InMemorySessionStore()
    artifacts = DictArtifactStore()
    selector = ContextWindowSelector(session_store=store, artifact_store=artifacts)

    async def scenario():
        session = await _populated_session(store, artifacts, [0, 1])
        artifacts.blobs.pop(session.page(1).artifact)
        return await selector.select(session, 2, 3)

    window = asyncio.run(scenario())

    assert window.prior_indices == (0,)
    assert [ref.data for ref in window.references] == [bytes([0]) * 4]


def test_missing_history_yields_shorter_window() -> None:
    store = InMemorySessionStore()
    artifacts = DictArtifactStore()
    selector = ContextWindowSelector(session_store=store, artifact_store=artifacts)

    async def scenario():
        session = await _populated_session(store, artifacts, [])
        return await selector.select(session, 1, 3)

    window = asyncio.run(scenario())

    assert len(window) == 0
    assert not window.has_anchor
