"""
Prompt construction for the PicStory planning backend.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping

PLAN_OUTPUT_FORMAT = (
    "OUTPUT FORMAT (STRICT JSON, no extra keys, no comments, no markdown):\n"
    "{\n"
    '  "coverPagePrompt": "string",\n'
    '  "items": [ { "index": 1, "prompt": "string", "caption": "string or null" }, ... ]\n'
    "}"
)


@dataclass(frozen=True)
class PlanningPrompt:
    """
    Container for the system and user prompts passed to the planning model.
    """

    system: str
    user: str


def option_value(options: Mapping[str, Any], name: str) -> Any:
    """
    Look up a planning option by its snake_case name, accepting camelCase keys too.
    """
    if name in options:
        return options[name]
    head, *rest = name.split("_")
    camel = head + "".join(part.capitalize() for part in rest)
    return options.get(camel)


def _complexity_hints(difficulty: str | None, age_range: str | None) -> list[str]:
    min_age: int | None = None
    if age_range:
        match = re.search(r"(\d{1,2})\s*[–-]", str(age_range))
        if match:
            min_age = int(match.group(1))
    very_young = min_age is not None and min_age <= 5

    if difficulty == "very-simple" or very_young:
        return [
            "Prefer CLOSE-UP or MEDIUM-CLOSE shots; mostly eye-level, centered or simple composition.",
            "Keep backgrounds extremely minimal (very few large shapes). Avoid complex perspective.",
            "One primary character with a single, clear action; avoid crowd scenes.",
        ]
    if difficulty == "simple":
        return [
            "Prefer MEDIUM shots; eye-level or slight low/high angles; use rule-of-thirds when helpful.",
            "Backgrounds stay simple with 2-3 large environment elements that may evolve across pages.",
            "Typically 1-2 characters; avoid tiny details and busy textures.",
        ]
    return [
        "Mix MEDIUM and occasional WIDE shots; use rule-of-thirds; sparing low/high angles for drama.",
        "Backgrounds can show clear environmental change but remain uncluttered and readable.",
        "1-3 characters max per page; keep key identity props consistent; avoid micro details.",
    ]


def _extra_guidance(options: Mapping[str, Any]) -> list[str]:
    lines: list[str] = []
    labelled = (
        ("age_range", "Target age range: {}."),
        ("style_hints", "Style hints: {}."),
        ("focus_characters", "Main characters/props: {}."),
        ("avoid_list", "Avoid: {}."),
        ("reference_description", "Reference cues from user images: {}"),
    )
    for name, template in labelled:
        value = option_value(options, name)
        if value:
            lines.append(template.format(str(value).strip()))
    difficulty = option_value(options, "difficulty")
    if difficulty == "very-simple":
        lines.append("Use extremely simple outlines and very large shapes suitable for preschoolers.")
    elif difficulty == "simple":
        lines.append("Use simple outlines and large shapes suitable for young kids.")
    elif difficulty == "moderate":
        lines.append("Use moderately simple outlines and clear shapes suitable for older kids.")
    return lines


def _bullets(lines: list[str], indent: str = "  ") -> str:
    return "\n".join(f"{indent}- {line}" for line in lines if line.strip())


def build_planning_prompt(
    *,
    kind: str,
    title: str,
    theme: str,
    page_count: int,
    options: Mapping[str, Any] | None = None,
) -> PlanningPrompt:
    """
    Build the prompt pair that asks the text model for a cover prompt plus
    ``page_count`` interior prompts.

    Parameters
    ----------
    kind:
        Content kind of the session; selects line-art or full-colour directives.
    title:
        Book title, required verbatim on the cover.
    theme:
        The user's base prompt.
    page_count:
        Number of interior items the model must return.
    options:
        Free-form planning options (``story_mode``, ``age_range``, ``difficulty``,
        ``style_hints``, ``allow_captions``, ``focus_characters``, ``avoid_list``,
        ``reference_description``). camelCase keys are accepted as well.
    """
    options = options or {}
    story_mode = option_value(options, "story_mode") is not False
    allow_captions = option_value(options, "allow_captions") is not False

    continuity_lines = [
        f"Pages are rendered sequentially: cover first, then 1..{page_count}.",
        "For each interior page the image model receives only that page's prompt plus the last few "
        "generated images as visual context.",
        "EACH interior prompt must be SELF-CONTAINED and restate essential identity/style cues "
        "(character name/species, signature clothing/props, environment vibe).",
        "Write direct IMAGE GENERATION PROMPTS only. No meta commentary or instructions to humans.",
    ]
    page_lines = [
        "SUBJECT + ACTION succinctly.",
        "CAMERA framing and VIEWPOINT: one of close-up/medium/wide and one of eye-level/low-angle/high-angle.",
        "CHARACTER DIRECTION and POSE explicitly (e.g., 'facing left and walking toward the forest').",
        "A concise BACKGROUND that EVOLVES across pages while staying readable and uncluttered.",
        "One short CONTINUITY CUE restating identity/style props.",
        "Each prompt concise (1-3 sentences) and not referencing other pages.",
        (
            "Make the pages read like a sequential story with small, meaningful progression."
            if story_mode
            else "Pages may be independent but remain thematically coherent."
        ),
        f"Provide exactly {page_count} items in the \"items\" array, indexed 1..{page_count}.",
        (
            'You may include a very short caption (3-7 words); if not needed, set "caption": null.'
            if allow_captions
            else 'Set "caption": null for each interior item.'
        ),
    ]

    if kind == "coloring_book":
        intro = "You are the planning engine for a kids coloring STORYBOOK. Produce a complete visual plan as STRICT JSON."
        cover_lines = [
            "Vibrant, polished FULL COLOR front-cover design (NOT a coloring page).",
            f'Must include the exact title text: "{title}" in the design. No placeholders.',
        ]
        page_lines.extend(
            [
                "BLACK-and-WHITE line art only: thick outlines, high contrast, no shading, large simple shapes.",
                "Do NOT mention colors in interior prompts and avoid text overlays.",
            ]
        )
    elif kind == "poem_collection":
        intro = "You plan FULL-COLOR illustration prompts for a children's POEM COLLECTION as STRICT JSON."
        cover_lines = ["FULL COLOR, friendly, portrait orientation cover for the collection."]
        page_lines.append("Each interior prompt visualises the vibe of one poem on the topic, full colour.")
    else:
        intro = "You plan a FULL-COLOR children's STORYBOOK as STRICT JSON for an image generator."
        cover_lines = ["FULL COLOR, kid-friendly, portrait orientation, clean composition."]
        page_lines.append("All pages FULL COLOR; keep composition clear with safe margins.")

    sections = [
        intro,
        "- SYSTEM CONTEXT:\n" + _bullets(continuity_lines),
        "- COVER PAGE:\n" + _bullets(cover_lines),
        "- INTERIOR PAGES:\n" + _bullets(page_lines),
        "- COMPLEXITY TUNING:\n"
        + _bullets(_complexity_hints(option_value(options, "difficulty"), option_value(options, "age_range"))),
    ]
    guidance = _extra_guidance(options)
    if guidance:
        sections.append("- EXTRA GUIDANCE:\n" + _bullets(guidance))
    sections.append(PLAN_OUTPUT_FORMAT)
    sections.append("IMPORTANT: Output MUST be valid JSON only. Do not include explanations or backticks.")

    user_prompt = f"Title: {title}\nBase prompt/theme: {theme}\nPages (interior): {page_count}"
    return PlanningPrompt(system="\n\n".join(sections), user=user_prompt)


_ENHANCER_BASE = {
    "coloring_book": (
        "You are a prompt refining assistant.\n"
        "Rewrite the provided user prompt into a clearer, more specific, high-quality prompt for "
        "generating images for a kids coloring STORYBOOK."
    ),
    "storybook": (
        "You are a prompt refining assistant for FULL-COLOR children's STORYBOOK illustrations. "
        "Rewrite the provided user prompt into a clearer, self-contained, high-quality image prompt."
    ),
    "poem_collection": (
        "You are a prompt refining assistant for FULL-COLOR illustrations in a children's POEM COLLECTION. "
        "Rewrite the provided user prompt into a clearer, self-contained, high-quality image prompt."
    ),
}

_ENHANCER_TARGETS = {
    "cover": "Target: COVER PAGE, vibrant FULL COLOR design cues, polished layout, portrait orientation.",
    "interior": "Target: INTERIOR PAGE, consistent character identity and environment vibe, portrait orientation.",
    "theme": "Target: THEME/PLANNING, general yet vivid, suitable for planning a coherent story and consistent characters.",
}

_LINE_ART_INTERIOR = (
    "Target: INTERIOR COLORING PAGE, BLACK-AND-WHITE line-art, high contrast, thick outlines, "
    "minimal background clutter, large simple shapes, portrait orientation."
)

ENHANCER_TARGETS = tuple(_ENHANCER_TARGETS)


def build_enhancer_instructions(kind: str, target: str) -> str:
    """
    System instructions for rewriting a user prompt for one content kind.
    """
    normalized_target = "interior" if target == "page" else target
    if normalized_target not in _ENHANCER_TARGETS:
        raise ValueError(f"Unsupported enhancement target '{target}'.")

    base = _ENHANCER_BASE.get(kind, _ENHANCER_BASE["storybook"])
    if kind == "coloring_book" and normalized_target == "interior":
        target_line = _LINE_ART_INTERIOR
    else:
        target_line = _ENHANCER_TARGETS[normalized_target]

    return "\n".join(
        [
            base,
            "Constraints:",
            "- Friendly, kid-safe, imaginative.",
            "- Preserve the user's theme and any named characters/props; improve clarity and composition.",
            "- Concise (1-2 sentences). No extra commentary.",
            f"- {target_line}",
            "Output only the enhanced prompt.",
        ]
    )
