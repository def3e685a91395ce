"""
Environment-driven settings for the PicStory workflow engine.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class WorkflowSettings:
    """
    Attributes
    ----------
    storage_root:
        Directory holding ``sessions/`` (state and images) and ``documents/`` (PDFs).
    max_concurrency:
        Upper bound on renders running at once through the generation queue.
    default_kind:
        Content kind used when a caller does not name one.
    """

    storage_root: Path = Path("output")
    max_concurrency: int = 4
    default_kind: str = "coloring_book"

    @property
    def sessions_dir(self) -> Path:
        return self.storage_root / "sessions"

    @property
    def documents_dir(self) -> Path:
        return self.storage_root / "documents"

    @classmethod
    def from_env(cls) -> "WorkflowSettings":
        """
        Read ``PICSTORY_STORAGE_ROOT``, ``PICSTORY_MAX_CONCURRENCY`` and
        ``PICSTORY_CONTENT_KIND``, falling back to the defaults.
        """
        raw_concurrency = os.getenv("PICSTORY_MAX_CONCURRENCY")
        try:
            max_concurrency = int(raw_concurrency) if raw_concurrency else cls.max_concurrency
        except ValueError as exc:
            raise ValueError(
                f"PICSTORY_MAX_CONCURRENCY must be an integer, got '{raw_concurrency}'."
            ) from exc
        if max_concurrency < 1:
            raise ValueError("PICSTORY_MAX_CONCURRENCY must be at least 1.")

        return cls(
            storage_root=Path(os.getenv("PICSTORY_STORAGE_ROOT") or "output").expanduser(),
            max_concurrency=max_concurrency,
            default_kind=os.getenv("PICSTORY_CONTENT_KIND") or cls.default_kind,
        )
