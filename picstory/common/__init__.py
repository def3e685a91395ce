"""
Common utilities shared across PicStory modules.
"""

from .llm import AsyncCompletionCallable, ChatResult, acall_chat_completion

__all__ = [
    "AsyncCompletionCallable",
    "ChatResult",
    "acall_chat_completion",
]
