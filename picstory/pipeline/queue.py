"""
Bounded dispatch for fire-and-return renders and background sweeps.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


class GenerationQueue:
    """
    Runs submitted jobs as asyncio tasks with at most ``max_concurrency`` active.

    Jobs are never cancelled by the queue. A failing job is logged; the failure
    does not propagate to whoever submitted it.
    """

    def __init__(self, max_concurrency: int = 4) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1.")
        self._max_concurrency = max_concurrency
        self._semaphore: asyncio.Semaphore | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, factory: JobFactory, *, name: str | None = None) -> asyncio.Task[Any]:
        loop = asyncio.get_running_loop()
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_concurrency)
        task = loop.create_task(self._run(factory, name or "job"), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until every submitted job, including ones submitted meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, factory: JobFactory, name: str) -> Any:
        if self._semaphore is None:
            raise RuntimeError("Queued jobs must be started through submit().")
        async with self._semaphore:
            try:
                return await factory()
            except Exception:
                logger.exception("Queued job %s failed.", name)
                return None
