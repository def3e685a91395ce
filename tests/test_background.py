"""Tests for the background completion sweep and the generation queue."""

from __future__ import annotations

import asyncio
import logging

import pytest

from conftest import FakeImageBackend, Harness
from picstory.pipeline import GenerationQueue
from picstory.sessions import ImageData, PlanRequest


def _request(page_count: int = 3) -> PlanRequest:
    return PlanRequest(title="Forest Trip", base_prompt="A friendly fox", page_count=page_count)


def test_sweep_continues_past_failures(make_harness) -> None:
    images = FakeImageBackend(fail_when=lambda prompt: "scene 2" in prompt)
    harness: Harness = make_harness(images=images)

    async def scenario():
        session = await harness.engine.plan(_request())
        populated = await harness.engine.complete_missing(session.id)
        return populated, await harness.engine.get_session(session.id)

    populated, session = asyncio.run(scenario())

    assert populated == [0, 1, 3]
    assert session.missing_indices() == [2]
    assert len(images.calls) == 4


def test_sweep_skips_populated_pages(harness: Harness) -> None:
    async def scenario():
        session = await harness.engine.plan(_request())
        await harness.engine.replace(session.id, 1, ImageData(data=b"\x89PNG\r\n\x1a\nx"))
        populated = await harness.engine.complete_missing(session.id)
        return populated, await harness.engine.get_session(session.id)

    populated, session = asyncio.run(scenario())

    assert populated == [0, 2, 3]
    assert session.is_complete
    assert len(harness.images.calls) == 3


def test_sweep_of_unknown_session_is_a_no_op(harness: Harness) -> None:
    async def scenario():
        return await harness.engine.complete_missing("missing")

    assert asyncio.run(scenario()) == []


def test_queue_bounds_concurrency() -> None:
    queue = GenerationQueue(max_concurrency=2)
    active = 0
    peak = 0

    async def job():
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return "done"

    async def scenario():
        tasks = [queue.submit(job, name=f"job-{index}") for index in range(6)]
        await queue.drain()
        return [task.result() for task in tasks]

    results = asyncio.run(scenario())

    assert results == ["done"] * 6
    assert peak == 2
    assert queue.pending == 0


def test_queue_logs_failed_jobs(caplog) -> None:
    queue = GenerationQueue(max_concurrency=1)

    async def broken():
        raise RuntimeError("boom")

    async def scenario():
        task = queue.submit(broken, name="broken-job")
        await queue.drain()
        return task.result()

    with caplog.at_level(logging.ERROR, logger="picstory.pipeline.queue"):
        result = asyncio.run(scenario())

    assert result is None
    assert "broken-job" in caplog.text


def test_queue_jobs_must_be_submitted() -> None:
    queue = GenerationQueue(max_concurrency=1)

    async def job():
        return "done"

    with pytest.raises(RuntimeError):
        asyncio.run(queue._run(job, "direct"))
