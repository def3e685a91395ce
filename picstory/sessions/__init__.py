"""
Session records, persistence, and collaborator contracts for PicStory.
"""

from .artifacts import LocalArtifactStore, LocalDocumentStore
from .billing import InMemoryQuotaLedger
from .errors import (
    ConcurrentModification,
    GenerationFailure,
    ImageEmbedFailure,
    IncompletePages,
    InsufficientQuota,
    InvalidIndex,
    PlanShapeMismatch,
    SessionNotFound,
    ValidationError,
    WorkflowError,
)
from .models import (
    BillingMode,
    FinalizedDocument,
    FitMode,
    ImageData,
    Page,
    PagePlan,
    PageState,
    Plan,
    PlanRequest,
    PrintSpec,
    Session,
)
from .policies import COLORING_BOOK, POEM_COLLECTION, POLICIES, STORYBOOK, ContentPolicy, get_policy
from .store import FileSessionStore, InMemorySessionStore, SessionStore

__all__ = [
    "BillingMode",
    "COLORING_BOOK",
    "ConcurrentModification",
    "ContentPolicy",
    "FileSessionStore",
    "FinalizedDocument",
    "FitMode",
    "GenerationFailure",
    "ImageData",
    "ImageEmbedFailure",
    "InMemoryQuotaLedger",
    "InMemorySessionStore",
    "IncompletePages",
    "InsufficientQuota",
    "InvalidIndex",
    "LocalArtifactStore",
    "LocalDocumentStore",
    "POEM_COLLECTION",
    "POLICIES",
    "Page",
    "PagePlan",
    "PageState",
    "Plan",
    "PlanRequest",
    "PlanShapeMismatch",
    "PrintSpec",
    "STORYBOOK",
    "Session",
    "SessionNotFound",
    "SessionStore",
    "ValidationError",
    "WorkflowError",
    "get_policy",
]
