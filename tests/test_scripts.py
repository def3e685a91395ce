"""Tests for the command line helpers."""

from __future__ import annotations

import argparse
import importlib.util
from pathlib import Path

from picstory.sessions import FitMode

SCRIPTS_DIR = Path(__file__).resolve().parents[1] / "scripts"


def _load_run_session():
    spec = importlib.util.spec_from_file_location("run_session", SCRIPTS_DIR / "run_session.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _args(**overrides) -> argparse.Namespace:
    values = {"width_inches": None, "height_inches": None, "dpi": None, "fit": "contain"}
    values.update(overrides)
    return argparse.Namespace(**values)


def test_cover_fit_without_dimensions_keeps_default_page() -> None:
    run_session = _load_run_session()

    spec = run_session.build_print_spec(_args(fit="cover"))

    assert spec is not None
    assert spec.fit is FitMode.COVER
    assert spec.page_size_points == (8.27 * 72, 11.69 * 72)


def test_default_arguments_leave_natural_size() -> None:
    run_session = _load_run_session()

    assert run_session.build_print_spec(_args()) is None
    assert run_session.build_print_spec(_args(width_inches=6.0)).width_inches == 6.0


def test_options_file_accepts_yaml(tmp_path: Path) -> None:
    run_session = _load_run_session()
    options = tmp_path / "options.yaml"
    options.write_text("age_range: 3-5\nstyle_hints: watercolor\n", encoding="utf-8")

    assert run_session.load_options_mapping(options) == {"age_range": "3-5", "style_hints": "watercolor"}
