"""
Single-pass completion of every page that still lacks an image.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .orchestrator import WorkflowEngine

logger = logging.getLogger(__name__)


class BackgroundCompletionWorker:
    """
    Walks a session's pages in index order and renders the empty ones.

    The session is reloaded before every decision so pages populated in the
    meantime (by a foreground call or an upload) are skipped. Each render goes
    through the engine's regular path, compare-and-swap commit included. A page
    that fails is logged and left empty; there is no retry.
    """

    def __init__(self, engine: "WorkflowEngine") -> None:
        self._engine = engine

    async def sweep(self, session_id: str) -> list[int]:
        """Return the indices this pass populated."""
        session = await self._engine.sessions.load(session_id)
        if session is None:
            logger.warning("Background sweep skipped: session %s no longer exists.", session_id)
            return []

        completed: list[int] = []
        for index in range(session.page_count + 1):
            current = await self._engine.sessions.load(session_id)
            if current is None:
                logger.warning("Session %s disappeared during the background sweep.", session_id)
                break
            if current.page(index).artifact:
                continue

            try:
                updated = await self._engine.render_page(session_id, index)
            except Exception:
                logger.exception("Background render failed for session %s page %d.", session_id, index)
                continue

            if updated.page(index).artifact:
                completed.append(index)

        logger.info(
            "Background sweep for session %s finished; populated %d page(s).", session_id, len(completed)
        )
        return completed
