"""
CLI example to plan a PicStory session, render every page and assemble the PDF.

Usage:
    python scripts/run_session.py \
        --kind coloring_book \
        --title "Forest Trip" \
        --prompt "A friendly fox explores the forest" \
        --pages 3 \
        --options options.yaml \
        --output forest_trip.pdf
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import shutil
import sys
from pathlib import Path
from typing import Any, Dict

import yaml

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from picstory import ImageData, PlanRequest, PrintSpec, WorkflowEngine, WorkflowSettings  # noqa: E402
from picstory.sessions import POLICIES, IncompletePages, LocalDocumentStore  # noqa: E402


class ProgressTracker:
    """
    Command-line progress updates for a PicStory session.
    """

    def __init__(self) -> None:
        self._page_bar: tqdm | None = None

    def __call__(self, stage: str, payload: Dict[str, Any]) -> None:
        match stage:
            case "plan:requesting":
                self._write(
                    f"[1/3] Planning '{payload.get('title')}' with {payload.get('page_count')} interior pages..."
                )
            case "plan:ready":
                total = int(payload.get("page_count", 0)) + 1
                self._write(f"[1/3] Session {payload.get('session_id')} planned. Rendering pages...")
                self._page_bar = tqdm(total=total, desc="Rendered pages", unit="page")
            case "page:rendering":
                if self._page_bar is not None:
                    index = payload.get("index")
                    label = "Cover" if index == 0 else f"Page {index}"
                    self._page_bar.set_description(f"{label} ({payload.get('references', 0)} refs)")
            case "page:done":
                if self._page_bar is not None:
                    self._page_bar.update(1)
            case "finalize:assembling":
                self.close()
                self._write(f"[3/3] Assembling {payload.get('pages')} pages into a PDF...")
            case "finalize:done":
                self._write(f"[3/3] Document {payload.get('document_id')} saved.")

    def close(self) -> None:
        if self._page_bar is not None:
            self._page_bar.close()
            self._page_bar = None

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Plan, render and assemble a PicStory book.")
    parser.add_argument(
        "--kind",
        choices=sorted(POLICIES),
        default=None,
        help="Content kind (default: PICSTORY_CONTENT_KIND or coloring_book).",
    )
    parser.add_argument("--title", required=True, help="Book title.")
    parser.add_argument("--prompt", required=True, help="Theme / base prompt for planning.")
    parser.add_argument("--pages", type=int, required=True, help="Number of interior pages.")
    parser.add_argument(
        "--options",
        default=None,
        help="Optional YAML/JSON file with planning options (age_range, style_hints, ...).",
    )
    parser.add_argument(
        "--reference-image",
        action="append",
        default=[],
        help="Reference image path used for continuity (repeatable, at most 2 are kept).",
    )
    parser.add_argument("--width-inches", type=float, default=None, help="Print width in inches.")
    parser.add_argument("--height-inches", type=float, default=None, help="Print height in inches.")
    parser.add_argument("--dpi", type=int, default=None, help="Print resolution.")
    parser.add_argument("--fit", choices=["contain", "cover"], default="contain", help="Image fit mode.")
    parser.add_argument(
        "--background",
        action="store_true",
        help="Render pages through the background sweep instead of one by one.",
    )
    parser.add_argument("--output", default=None, help="Copy the finished PDF to this path.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def load_options_mapping(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        data = yaml.safe_load(text)
    elif suffix == ".json":
        data = json.loads(text)
    else:
        raise ValueError("Unsupported options file format. Use YAML or JSON.")

    if not isinstance(data, dict):
        raise ValueError("Options file must deserialize to a mapping.")
    return data


def build_print_spec(args: argparse.Namespace) -> PrintSpec | None:
    if args.width_inches is None and args.height_inches is None and args.dpi is None:
        if args.fit == "contain":
            return None
        return PrintSpec(fit=args.fit)
    return PrintSpec.from_mapping(
        {
            "width_inches": args.width_inches,
            "height_inches": args.height_inches,
            "dpi": args.dpi,
            "fit": args.fit,
        }
    )


async def run(args: argparse.Namespace) -> int:
    settings = WorkflowSettings.from_env()
    tracker = ProgressTracker()
    engine = WorkflowEngine(policy=args.kind, settings=settings, progress_callback=tracker)

    references = [
        ImageData(data=Path(path).read_bytes(), media_type="image/jpeg" if path.lower().endswith((".jpg", ".jpeg")) else "image/png")
        for path in args.reference_image
    ]
    request = PlanRequest(
        title=args.title,
        base_prompt=args.prompt,
        page_count=args.pages,
        options=load_options_mapping(Path(args.options)) if args.options else {},
        reference_images=references,
        print_spec=build_print_spec(args),
        background=args.background,
    )

    try:
        document = await engine.create_book(request)
    except IncompletePages as exc:
        tqdm.write(f"Pages without an image: {exc.missing}. Re-run generation and finalize the session again.")
        return 1
    finally:
        tracker.close()

    pdf_path = LocalDocumentStore(settings.documents_dir).path(document.document_id)
    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(pdf_path, output_path)
        pdf_path = output_path
    print(f"Saved '{document.title}' ({document.page_count} interior pages) to {pdf_path}")
    return 0


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
