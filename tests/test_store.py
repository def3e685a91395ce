"""Tests for session persistence and compare-and-swap saves."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from conftest import make_png
from picstory.sessions import (
    BillingMode,
    ConcurrentModification,
    FileSessionStore,
    LocalDocumentStore,
    ImageData,
    InMemorySessionStore,
    SessionNotFound,
)
from picstory.sessions.store import VersionConflict


async def _create(store, page_count: int = 2):
    return await store.create(
        kind="coloring_book",
        title="Forest Trip",
        base_prompt="foxes",
        page_count=page_count,
        billing_mode=BillingMode.PRECHARGED,
        cover_prompt="cover",
        page_prompts=[f"page {index}" for index in range(1, page_count + 1)],
        captions=["hello", None],
    )


def test_file_store_persists_yaml_state(tmp_path: Path) -> None:
    store = FileSessionStore(tmp_path)

    async def scenario():
        created = await _create(store)
        return created, await store.load(created.id)

    created, loaded = asyncio.run(scenario())

    assert (tmp_path / created.id / "state.yaml").exists()
    assert loaded == created
    assert loaded.version == 1
    assert [page.text for page in loaded.pages] == [None, "hello", None]


def test_create_requires_matching_prompt_count(tmp_path: Path) -> None:
    store = FileSessionStore(tmp_path)

    async def scenario():
        await store.create(
            kind="storybook",
            title="t",
            base_prompt="p",
            page_count=3,
            billing_mode=BillingMode.PER_PAGE,
            cover_prompt="c",
            page_prompts=["only one"],
        )

    with pytest.raises(ValueError):
        asyncio.run(scenario())


def test_save_with_stale_version_conflicts(tmp_path: Path) -> None:
    store = FileSessionStore(tmp_path)

    async def scenario():
        session = await _create(store)
        stale = session.copy()
        session.pages[1].confirmed = True
        await store.save(session, expected_version=1)
        with pytest.raises(VersionConflict) as excinfo:
            await store.save(stale, expected_version=1)
        return excinfo.value, await store.require(session.id)

    error, current = asyncio.run(scenario())

    assert isinstance(error, ConcurrentModification)
    assert error.expected == 1 and error.actual == 2
    assert current.pages[1].confirmed is True


def test_transact_reapplies_after_conflict() -> None:
    store = InMemorySessionStore()
    attempts: list[int] = []

    async def scenario():
        session = await _create(store)

        def mutate(current):
            attempts.append(current.version)
            if len(attempts) == 1:
                # Simulate a writer that committed after this load.
                store._states[session.id]["version"] += 1
            current.pages[2].prompt = "updated"
            return True

        return await store.transact(session.id, mutate)

    session, committed = asyncio.run(scenario())

    assert committed is True
    assert attempts == [1, 2]
    assert session.version == 3
    assert session.pages[2].prompt == "updated"


def test_transact_gives_up_after_bounded_attempts() -> None:
    store = InMemorySessionStore()

    async def scenario():
        session = await _create(store)

        def always_conflicting(current):
            store._states[session.id]["version"] += 1
            return True

        await store.transact(session.id, always_conflicting, attempts=3)

    with pytest.raises(ConcurrentModification):
        asyncio.run(scenario())


def test_transact_without_changes_keeps_version() -> None:
    store = InMemorySessionStore()

    async def scenario():
        session = await _create(store)
        return await store.transact(session.id, lambda current: False)

    session, committed = asyncio.run(scenario())

    assert committed is False
    assert session.version == 1


def test_context_images_are_limited_and_reloaded(tmp_path: Path) -> None:
    store = FileSessionStore(tmp_path)
    images = [ImageData(data=make_png(color=(index, 0, 0)), media_type="image/png") for index in range(3)]

    async def scenario():
        session = await _create(store)
        session = await store.store_context_images(session.id, images)
        Path(session.context_images[1].path).unlink()
        return session, await store.load_context_images(session)

    session, loaded = asyncio.run(scenario())

    assert len(session.context_images) == 2
    assert [image.data for image in loaded] == [images[0].data]


def test_unknown_and_unsafe_ids_are_not_found(tmp_path: Path) -> None:
    store = FileSessionStore(tmp_path)

    async def scenario():
        assert await store.load("missing") is None
        with pytest.raises(SessionNotFound):
            await store.require("missing")
        with pytest.raises(SessionNotFound):
            await store.require("../escape")

    asyncio.run(scenario())


def test_document_store_lists_recent_documents(tmp_path: Path) -> None:
    documents = LocalDocumentStore(tmp_path / "documents")

    async def scenario():
        older = await documents.save(b"%PDF-1", {"title": "Forest Trip", "owner_id": "ana", "page_count": 3, "created_at": 100})
        newer = await documents.save(b"%PDF-2", {"title": "Rain Rhymes", "owner_id": "ana", "page_count": 2, "created_at": 200})
        other = await documents.save(b"%PDF-3", {"title": "Sea Story", "owner_id": "ben", "page_count": 5, "created_at": 300})
        (tmp_path / "documents" / "broken.yaml").write_text("[unclosed", encoding="utf-8")
        return older, newer, other, {
            "all": await documents.list_recent(),
            "ana": await documents.list_recent(owner_id="ana"),
            "one": await documents.list_recent(limit=1),
        }

    older, newer, other, listed = asyncio.run(scenario())

    assert [entry["document_id"] for entry in listed["all"]] == [other, newer, older]
    assert [entry["title"] for entry in listed["ana"]] == ["Rain Rhymes", "Forest Trip"]
    assert listed["one"] == [{"document_id": other, "title": "Sea Story", "page_count": 5, "created_at": 300}]


def test_document_store_without_documents_lists_nothing(tmp_path: Path) -> None:
    assert asyncio.run(LocalDocumentStore(tmp_path / "missing").list_recent()) == []
