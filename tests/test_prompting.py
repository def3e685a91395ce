"""Tests for page prompt construction."""

from __future__ import annotations

from dataclasses import replace

import pytest

from picstory.ai_generation import build_page_prompt, build_print_instructions
from picstory.sessions import COLORING_BOOK, POEM_COLLECTION, STORYBOOK, PrintSpec


def test_coloring_cover_is_colour_with_title() -> None:
    prompt = build_page_prompt("A fox on a hill", policy=COLORING_BOOK, title="Forest Trip", is_cover=True)

    assert prompt.startswith("A fox on a hill")
    assert "Additional cover instructions:" in prompt
    assert '"Forest Trip"' in prompt
    assert "line-art" in prompt


def test_coloring_interior_is_line_art_without_print_specs() -> None:
    spec = PrintSpec(width_inches=8.5, height_inches=11)

    prompt = build_page_prompt(
        "The fox jumps", policy=COLORING_BOOK, title="Forest Trip", is_cover=False, print_spec=spec
    )

    assert "BLACK-AND-WHITE line-art" in prompt
    assert "Print specifications:" not in prompt


def test_storybook_pages_include_print_specs() -> None:
    spec = PrintSpec(width_inches=8.5, height_inches=11, dpi=300)

    prompt = build_page_prompt("The fox jumps", policy=STORYBOOK, title="Forest Trip", is_cover=False, print_spec=spec)

    assert "Full COLOR" in prompt
    assert "8.50x11.00 inches at 300 DPI" in prompt
    assert "2550×3300 px" in prompt
    assert "portrait orientation and print readability" in prompt


def test_storybook_cover_omits_title_typesetting() -> None:
    prompt = build_page_prompt("Cover art", policy=POEM_COLLECTION, title="Rhymes", is_cover=True)

    assert "Rhymes" not in prompt


def test_empty_prompt_is_rejected() -> None:
    with pytest.raises(ValueError):
        build_page_prompt("  ", policy=STORYBOOK, title="t", is_cover=False)


def test_print_instructions_default_to_a4() -> None:
    text = build_print_instructions(None)

    assert "8.27×11.69 inches at 300 DPI" in text
    assert "portrait orientation" in text
    assert "storybook" in build_print_instructions(None, use_case="storybook")


def test_line_art_cover_when_cover_colour_is_off() -> None:
    policy = replace(COLORING_BOOK, cover_in_color=False)

    prompt = build_page_prompt("A fox on a hill", policy=policy, title="Forest Trip", is_cover=True)

    assert "Additional cover instructions:" in prompt
    assert "BLACK-AND-WHITE line-art" in prompt
    assert "Full COLOR" not in prompt
    assert '"Forest Trip"' in prompt


def test_print_instructions_name_the_use_case() -> None:
    first_line = build_print_instructions(PrintSpec(use_case=STORYBOOK.use_case)).splitlines()[0]

    assert first_line == "You are generating images for print-ready storybook."
