"""
Prompt construction utilities for PicStory page renders.
"""

from __future__ import annotations

from typing import Sequence

from picstory.sessions.models import PrintSpec
from picstory.sessions.policies import ContentPolicy


def build_page_prompt(
    page_prompt: str,
    *,
    policy: ContentPolicy,
    title: str,
    is_cover: bool,
    print_spec: PrintSpec | None = None,
) -> str:
    """
    Append the fixed style and print directives for a page's role.

    Parameters
    ----------
    page_prompt:
        The page's stored prompt, or a per-call override when editing.
    policy:
        Content policy of the session; decides colour treatment and title typesetting.
    title:
        Book title, typeset on the cover when the policy asks for it.
    is_cover:
        Whether the render is for page 0.
    print_spec:
        Optional print target; only rendered into the prompt when the policy wants it.
    """
    if not page_prompt or not page_prompt.strip():
        raise ValueError("page_prompt must be a non-empty string.")

    sections: list[str] = []

    if is_cover and policy.interior_line_art and policy.cover_in_color:
        cover_lines = [
            "Full COLOR, vibrant and attractive composition.",
        ]
        if policy.include_title_on_cover:
            cover_lines.append(
                f'Include the exact book title text: "{title}" as part of the design (e.g., nice typography).'
            )
        cover_lines.extend(
            [
                "Portrait orientation, polished layout, visually appealing for kids.",
                "Do NOT render as black-and-white or line-art.",
            ]
        )
        sections.append(_format_bullet_section("Additional cover instructions:", cover_lines))
    elif policy.interior_line_art:
        line_art = [
            "Render as simple, high-contrast BLACK-AND-WHITE line-art (no shading).",
            "Keep characters/objects consistent with previous page.",
            "Minimal or no background clutter.",
        ]
        if is_cover and policy.include_title_on_cover:
            line_art.append(f'Include the exact book title text: "{title}" in outlined lettering.')
        heading = "Additional cover instructions:" if is_cover else "Additional interior instructions:"
        sections.append(_format_bullet_section(heading, line_art))
    else:
        color_line = "Full COLOR, kid-friendly, portrait orientation. Clean, readable composition."
        if is_cover and policy.include_title_on_cover:
            color_line += f' Include the exact title text "{title}" with tasteful typography.'
        sections.append(color_line)

    if policy.print_directives and print_spec is not None:
        pixel_width, pixel_height = print_spec.pixel_size
        sections.append(
            _format_bullet_section(
                "Print specifications:",
                [
                    f"Target page size: {print_spec.width_inches:.2f}x{print_spec.height_inches:.2f} inches "
                    f"at {print_spec.dpi} DPI (≈ {pixel_width}×{pixel_height} px).",
                    f"Compose for {print_spec.orientation} orientation and print readability.",
                ],
            )
        )

    return page_prompt.rstrip() + "\n\n" + "\n\n".join(sections)


def build_print_instructions(print_spec: PrintSpec | None, *, use_case: str | None = None) -> str:
    """
    Standing print guidance sent ahead of every page prompt.

    Without a print spec the defaults describe an A4 page at 300 DPI.
    """
    spec = print_spec or PrintSpec()
    label = (use_case or spec.use_case or "children's picture/colouring/story book pages for print").strip()
    return "\n".join(
        [
            f"You are generating images for print-ready {label}.",
            f"Target page size: {spec.width_inches:.2f}×{spec.height_inches:.2f} inches at {spec.dpi} DPI.",
            f"Compose for {spec.orientation} orientation. Keep important content within safe margins; "
            "avoid placing critical details at the very edges.",
            "Ensure clean, crisp lines and high contrast where appropriate; avoid artifacts, banding, "
            "or heavy compression.",
            "If the first reference image is a size guide, treat it as a CANVAS/ASPECT guide only; "
            "do not copy its content.",
        ]
    )


def _format_bullet_section(title: str, lines: Sequence[str]) -> str:
    bullet_block = "\n".join(f"- {line}" for line in lines if line.strip())
    return f"{title}\n{bullet_block}"
