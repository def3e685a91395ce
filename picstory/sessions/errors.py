"""
Error taxonomy surfaced by the PicStory workflow engine.
"""

from __future__ import annotations

from typing import Sequence


class WorkflowError(Exception):
    """
    Base class for every error raised at the workflow seam.

    ``status`` mirrors the HTTP status a transport layer should answer with.
    """

    status: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(WorkflowError):
    status = 400


class InvalidIndex(ValidationError):
    def __init__(self, index: int, page_count: int) -> None:
        super().__init__(f"Invalid page index {index}; expected 0..{page_count}.")
        self.index = index
        self.page_count = page_count


class SessionNotFound(WorkflowError):
    status = 404

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session '{session_id}' not found.")
        self.session_id = session_id


class PlanShapeMismatch(WorkflowError):
    """The planning backend returned the wrong number of items or malformed data."""

    status = 502


class GenerationFailure(WorkflowError):
    """The image backend produced no usable image."""

    status = 502


class IncompletePages(WorkflowError):
    status = 400

    def __init__(self, missing: Sequence[int]) -> None:
        self.missing = list(missing)
        joined = ", ".join(str(index) for index in self.missing)
        super().__init__(f"Some pages have no image: {joined}.")


class ImageEmbedFailure(WorkflowError):
    status = 422


class InsufficientQuota(WorkflowError):
    status = 402

    def __init__(self, account_id: str, requested: int, balance: int) -> None:
        super().__init__("INSUFFICIENT_CREDITS")
        self.account_id = account_id
        self.requested = requested
        self.balance = balance


class ConcurrentModification(WorkflowError):
    """A compare-and-swap save kept losing against other writers."""

    status = 409
