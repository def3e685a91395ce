"""
Page render backends and prompt construction for PicStory.
"""

from .prompting import build_page_prompt, build_print_instructions
from .replicate_service import ReplicateImageGenerator, select_inline_references

__all__ = [
    "build_page_prompt",
    "build_print_instructions",
    "ReplicateImageGenerator",
    "select_inline_references",
]
