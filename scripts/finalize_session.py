"""
Assemble an existing PicStory session into a PDF.

Usage:
    python scripts/finalize_session.py --session <session-id> --output book.pdf
"""

from __future__ import annotations

import argparse
import asyncio
import shutil
import sys
from pathlib import Path

# Ensure project root is on the Python path.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from picstory import WorkflowSettings  # noqa: E402
from picstory.pdf_generation import DocumentAssembler  # noqa: E402
from picstory.sessions import (  # noqa: E402
    FileSessionStore,
    IncompletePages,
    LocalArtifactStore,
    LocalDocumentStore,
)
from picstory.pipeline import WorkflowEngine  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Convert a finished PicStory session into a PDF.")
    parser.add_argument("--session", required=True, help="Session identifier.")
    parser.add_argument("--output", required=True, help="Destination PDF file path.")
    parser.add_argument(
        "--storage-root",
        default=None,
        help="Storage directory (default: PICSTORY_STORAGE_ROOT or ./output).",
    )
    return parser.parse_args()


class _NoRenders:
    """Finalizing never renders; refuse if anything asks."""

    async def generate(self, prompt, references, print_spec=None):
        raise RuntimeError("finalize_session.py does not render pages.")


async def run(args: argparse.Namespace) -> int:
    settings = WorkflowSettings.from_env()
    if args.storage_root:
        settings = WorkflowSettings(
            storage_root=Path(args.storage_root).expanduser(),
            max_concurrency=settings.max_concurrency,
            default_kind=settings.default_kind,
        )

    session_store = FileSessionStore(settings.sessions_dir)
    session = await session_store.require(args.session)
    documents = LocalDocumentStore(settings.documents_dir)
    engine = WorkflowEngine(
        policy=session.kind,
        settings=settings,
        session_store=session_store,
        artifact_store=LocalArtifactStore(settings.sessions_dir),
        document_store=documents,
        image_backend=_NoRenders(),
        assembler=DocumentAssembler(),
    )

    try:
        document = await engine.finalize(session.id)
    except IncompletePages as exc:
        print(f"Cannot finalize: pages {exc.missing} have no image.", file=sys.stderr)
        return 1

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(documents.path(document.document_id), output_path)
    print(f"Saved PDF to {output_path}")
    return 0


def main() -> int:
    return asyncio.run(run(parse_args()))


if __name__ == "__main__":
    raise SystemExit(main())
