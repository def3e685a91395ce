"""
Session orchestration for PicStory: context selection, rendering, background
completion and final assembly.
"""

from .background import BackgroundCompletionWorker
from .context_window import ContextWindow, ContextWindowSelector, prior_pages
from .orchestrator import ProgressCallback, WorkflowEngine
from .queue import GenerationQueue
from .settings import WorkflowSettings

__all__ = [
    "BackgroundCompletionWorker",
    "ContextWindow",
    "ContextWindowSelector",
    "GenerationQueue",
    "ProgressCallback",
    "WorkflowEngine",
    "WorkflowSettings",
    "prior_pages",
]
