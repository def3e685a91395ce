"""
Continuity context selection for page renders.

The image backend accepts only a handful of inline references per call, so each
render is shown the last few prior pages rather than the whole history, plus the
session's standing reference images.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from picstory.sessions.interfaces import ArtifactStore
from picstory.sessions.models import ImageData, Page, Session
from picstory.sessions.store import SessionStore

logger = logging.getLogger(__name__)

MAX_HISTORY = 3


@dataclass(frozen=True)
class ContextWindow:
    """Resolved references for one render, in priority order."""

    references: tuple[ImageData, ...] = ()
    prior_indices: tuple[int, ...] = ()
    context_image_count: int = 0
    has_anchor: bool = False
    has_explicit: bool = False

    def __len__(self) -> int:
        return len(self.references)


def prior_pages(session: Session, target_index: int, count: int) -> list[Page]:
    """
    Return up to ``count`` populated pages before ``target_index``, oldest first.
    """
    session.ensure_valid_index(target_index)
    limit = max(1, min(MAX_HISTORY, int(count)))
    populated = [page for page in session.pages[:target_index] if page.artifact]
    return populated[-limit:]


class ContextWindowSelector:
    def __init__(self, *, session_store: SessionStore, artifact_store: ArtifactStore) -> None:
        self._sessions = session_store
        self._artifacts = artifact_store

    async def select(
        self,
        session: Session,
        target_index: int,
        count: int,
        *,
        explicit: ImageData | None = None,
        anchor: ImageData | None = None,
    ) -> ContextWindow:
        """
        Build ``[anchor] + [explicit] + prior renders + context images``.

        ``anchor`` is the page's current artifact when editing; ``explicit`` is a
        per-call reference supplied by the caller.
        """
        history: list[ImageData] = []
        indices: list[int] = []
        for page in prior_pages(session, target_index, count):
            image = await self._read_page(session, page)
            if image is not None:
                history.append(image)
                indices.append(page.index)

        context_images = await self._sessions.load_context_images(session)

        leading: list[ImageData] = []
        if anchor is not None:
            leading.append(anchor)
        if explicit is not None:
            leading.append(explicit)

        return ContextWindow(
            references=tuple(leading + history + context_images),
            prior_indices=tuple(indices),
            context_image_count=len(context_images),
            has_anchor=anchor is not None,
            has_explicit=explicit is not None,
        )

    async def _read_page(self, session: Session, page: Page) -> ImageData | None:
        try:
            data = await self._artifacts.read(page.artifact or "")
        except Exception:
            logger.warning(
                "Skipping unreadable artifact for session %s page %d.",
                session.id,
                page.index,
                exc_info=True,
            )
            return None
        return ImageData(data=data, media_type=page.media_type or "image/png")
