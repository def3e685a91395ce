"""
PicStory package exposing session planning, page rendering, and PDF assembly.
"""

from .pdf_generation import DocumentAssembler
from .pipeline import GenerationQueue, WorkflowEngine, WorkflowSettings
from .sessions import (
    BillingMode,
    FinalizedDocument,
    ImageData,
    PlanRequest,
    PrintSpec,
    Session,
    get_policy,
)

__all__ = [
    "BillingMode",
    "DocumentAssembler",
    "FinalizedDocument",
    "GenerationQueue",
    "ImageData",
    "PlanRequest",
    "PrintSpec",
    "Session",
    "WorkflowEngine",
    "WorkflowSettings",
    "get_policy",
]
