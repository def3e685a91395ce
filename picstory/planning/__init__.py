"""
Text planning, reference summaries and prompt enhancement for PicStory.
"""

from .enhancer import LiteLLMPromptEnhancer
from .planner import LiteLLMPlanner, parse_plan
from .prompting import PlanningPrompt, build_enhancer_instructions, build_planning_prompt
from .references import LiteLLMReferenceSummarizer

__all__ = [
    "LiteLLMPlanner",
    "LiteLLMPromptEnhancer",
    "LiteLLMReferenceSummarizer",
    "PlanningPrompt",
    "build_enhancer_instructions",
    "build_planning_prompt",
    "parse_plan",
]
