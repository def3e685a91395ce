"""
Local implementations of the artifact and document persistence collaborators.
"""

from __future__ import annotations

import asyncio
import logging
import re
import secrets
from pathlib import Path
from typing import Any, Mapping

import requests
import yaml

from .models import ImageData, extension_for, now_ms

logger = logging.getLogger(__name__)


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


class LocalArtifactStore:
    """
    Writes page images under ``<root>/<session_id>/images``.

    References are absolute file paths. ``http(s)`` references, e.g. produced by
    an external uploader, are fetched over the network when read.
    """

    def __init__(self, root: str | Path, *, request_timeout: float = 30.0) -> None:
        self.root = Path(root).expanduser()
        self.request_timeout = request_timeout

    async def write(self, session_id: str, index: int, image: ImageData) -> str:
        token = secrets.token_hex(3)
        filename = f"page-{index}-{now_ms()}-{token}.{extension_for(image.media_type)}"
        path = self.root / session_id / "images" / filename
        await asyncio.to_thread(self._write_file, path, image.data)
        return str(path)

    async def read(self, reference: str) -> bytes:
        if reference.lower().startswith(("http://", "https://")):
            return await asyncio.to_thread(self._fetch, reference)
        return await asyncio.to_thread(Path(reference).read_bytes)

    async def discard(self, reference: str) -> None:
        if reference.lower().startswith(("http://", "https://")):
            return
        await asyncio.to_thread(Path(reference).unlink, missing_ok=True)

    def _fetch(self, url: str) -> bytes:
        response = requests.get(url, timeout=self.request_timeout)
        response.raise_for_status()
        return response.content

    @staticmethod
    def _write_file(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


class LocalDocumentStore:
    """Keeps finished PDFs and a YAML metadata sidecar in one directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()

    async def save(self, data: bytes, metadata: Mapping[str, Any]) -> str:
        base = slugify(str(metadata.get("title") or "")) or "book"
        document_id = f"{base}-{now_ms()}-{secrets.token_hex(2)}"
        payload = dict(metadata)
        payload["document_id"] = document_id
        payload["bytes"] = len(data)
        await asyncio.to_thread(self._write, document_id, data, payload)
        logger.info("Saved document %s (%d bytes).", document_id, len(data))
        return document_id

    def path(self, document_id: str) -> Path:
        return self.root / f"{document_id}.pdf"

    def metadata(self, document_id: str) -> dict[str, Any] | None:
        sidecar = self.root / f"{document_id}.yaml"
        if not sidecar.exists():
            return None
        data = yaml.safe_load(sidecar.read_text(encoding="utf-8"))
        return dict(data) if isinstance(data, Mapping) else None

    async def list_recent(self, owner_id: str | None = None, limit: int = 10) -> list[dict[str, Any]]:
        """
        Summaries of the newest documents, optionally restricted to one owner.

        Each entry carries ``document_id``, ``title``, ``page_count`` and
        ``created_at`` read from the YAML sidecars.
        """
        entries = await asyncio.to_thread(self._read_sidecars)
        if owner_id is not None:
            entries = [entry for entry in entries if entry.get("owner_id") == owner_id]
        entries.sort(key=lambda entry: entry.get("created_at") or 0, reverse=True)
        return [
            {
                "document_id": entry.get("document_id"),
                "title": entry.get("title"),
                "page_count": entry.get("page_count"),
                "created_at": entry.get("created_at"),
            }
            for entry in entries[: max(0, limit)]
        ]

    def _read_sidecars(self) -> list[dict[str, Any]]:
        if not self.root.exists():
            return []
        entries: list[dict[str, Any]] = []
        for sidecar in self.root.glob("*.yaml"):
            try:
                data = yaml.safe_load(sidecar.read_text(encoding="utf-8"))
            except (OSError, yaml.YAMLError):
                logger.warning("Skipping unreadable document metadata %s.", sidecar, exc_info=True)
                continue
            if isinstance(data, Mapping):
                entry = dict(data)
                entry.setdefault("document_id", sidecar.stem)
                entries.append(entry)
        return entries

    def _write(self, document_id: str, data: bytes, metadata: Mapping[str, Any]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.path(document_id).write_bytes(data)
        (self.root / f"{document_id}.yaml").write_text(
            yaml.safe_dump(dict(metadata), sort_keys=False, allow_unicode=True),
            encoding="utf-8",
        )
