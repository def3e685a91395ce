"""
Session persistence with compare-and-swap saves.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

import yaml

from .errors import ConcurrentModification, SessionNotFound
from .models import (
    BillingMode,
    ContextImageRef,
    ImageData,
    Page,
    PrintSpec,
    Session,
    extension_for,
    now_ms,
)

logger = logging.getLogger(__name__)

MAX_CONTEXT_IMAGES = 2

Mutation = Callable[[Session], bool]


class VersionConflict(ConcurrentModification):
    def __init__(self, session_id: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Session '{session_id}' changed concurrently (expected version {expected}, found {actual})."
        )
        self.expected = expected
        self.actual = actual


class SessionStore(ABC):
    """
    Durable keyed record of sessions.

    ``save`` is the only durability boundary. Saves carrying ``expected_version``
    succeed only if nobody else saved in between; ``transact`` builds the
    read-modify-write loop the orchestrator relies on for its concurrency rule.
    """

    def __init__(self) -> None:
        self._commit_lock = asyncio.Lock()

    # ------------------------------------------------------------------ primitives

    @abstractmethod
    async def _read(self, session_id: str) -> Mapping[str, Any] | None:
        ...

    @abstractmethod
    async def _write(self, session: Session) -> None:
        ...

    @abstractmethod
    async def _write_context_image(self, session_id: str, position: int, image: ImageData) -> str:
        ...

    @abstractmethod
    async def _read_context_image(self, path: str) -> bytes:
        ...

    # ------------------------------------------------------------------ contract

    async def create(
        self,
        *,
        kind: str,
        title: str,
        base_prompt: str,
        page_count: int,
        billing_mode: BillingMode,
        cover_prompt: str,
        page_prompts: Sequence[str],
        captions: Sequence[str | None] | None = None,
        options: Mapping[str, Any] | None = None,
        print_spec: PrintSpec | None = None,
        owner_id: str | None = None,
    ) -> Session:
        if len(page_prompts) != page_count:
            raise ValueError(f"Expected {page_count} page prompts, got {len(page_prompts)}.")

        captions = list(captions or [])
        pages = [Page(index=0, prompt=cover_prompt)]
        for position, prompt in enumerate(page_prompts, start=1):
            caption = captions[position - 1] if position - 1 < len(captions) else None
            pages.append(Page(index=position, prompt=prompt, text=caption or None))

        session = Session(
            id=uuid.uuid4().hex,
            kind=kind,
            title=title,
            base_prompt=base_prompt,
            page_count=page_count,
            billing_mode=billing_mode,
            pages=pages,
            options=dict(options or {}),
            print_spec=print_spec,
            owner_id=owner_id,
        )
        return await self.save(session)

    async def load(self, session_id: str) -> Session | None:
        payload = await self._read(session_id)
        if payload is None:
            return None
        return Session.from_dict(payload)

    async def require(self, session_id: str) -> Session:
        session = await self.load(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def save(self, session: Session, expected_version: int | None = None) -> Session:
        async with self._commit_lock:
            current = await self._read(session.id)
            current_version = int(current.get("version", 0)) if current else 0
            if expected_version is not None and current_version != expected_version:
                raise VersionConflict(session.id, expected_version, current_version)
            session.version = current_version + 1
            session.updated_at = now_ms()
            await self._write(session)
        return session

    async def transact(
        self,
        session_id: str,
        mutate: Mutation,
        *,
        attempts: int = 5,
    ) -> tuple[Session, bool]:
        """
        Apply ``mutate`` to a freshly loaded session and save it atomically.

        ``mutate`` returns False to leave the stored session untouched. On a
        version conflict the session is reloaded and the mutation re-applied.
        """
        for _ in range(max(1, attempts)):
            session = await self.require(session_id)
            loaded_version = session.version
            if not mutate(session):
                return session, False
            try:
                await self.save(session, expected_version=loaded_version)
            except VersionConflict:
                logger.debug("Retrying transaction on session %s after a conflict.", session_id)
                continue
            return session, True
        raise ConcurrentModification(f"Gave up updating session '{session_id}' after {attempts} attempts.")

    async def store_context_images(self, session_id: str, images: Sequence[ImageData]) -> Session:
        refs: list[ContextImageRef] = []
        for position, image in enumerate(images[:MAX_CONTEXT_IMAGES], start=1):
            path = await self._write_context_image(session_id, position, image)
            refs.append(ContextImageRef(path=path, media_type=image.media_type or "image/png"))

        def _attach(session: Session) -> bool:
            session.context_images = refs
            return True

        session, _ = await self.transact(session_id, _attach)
        return session

    async def load_context_images(self, session: Session) -> list[ImageData]:
        loaded: list[ImageData] = []
        for ref in session.context_images:
            try:
                data = await self._read_context_image(ref.path)
            except OSError:
                logger.warning("Context image %s for session %s is unreadable.", ref.path, session.id)
                continue
            loaded.append(ImageData(data=data, media_type=ref.media_type))
        return loaded


class FileSessionStore(SessionStore):
    """
    Stores each session as ``<root>/<id>/state.yaml`` with images alongside.
    """

    STATE_FILENAME = "state.yaml"

    def __init__(self, root: str | Path) -> None:
        super().__init__()
        self.root = Path(root).expanduser()

    def session_dir(self, session_id: str) -> Path:
        if not session_id or Path(session_id).name != session_id or session_id in {".", ".."}:
            raise SessionNotFound(session_id)
        return self.root / session_id

    def images_dir(self, session_id: str) -> Path:
        return self.session_dir(session_id) / "images"

    async def _read(self, session_id: str) -> Mapping[str, Any] | None:
        path = self.session_dir(session_id) / self.STATE_FILENAME
        return await asyncio.to_thread(self._read_state, path)

    async def _write(self, session: Session) -> None:
        directory = self.session_dir(session.id)
        await asyncio.to_thread(self._write_state, directory, session.to_dict())

    async def _write_context_image(self, session_id: str, position: int, image: ImageData) -> str:
        directory = self.images_dir(session_id)
        filename = f"context-{position}-{now_ms()}.{extension_for(image.media_type)}"
        path = directory / filename
        await asyncio.to_thread(_write_bytes, path, image.data)
        return str(path)

    async def _read_context_image(self, path: str) -> bytes:
        return await asyncio.to_thread(Path(path).read_bytes)

    @staticmethod
    def _read_state(path: Path) -> Mapping[str, Any] | None:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        data = yaml.safe_load(text)
        if not isinstance(data, Mapping):
            raise ValueError(f"Session state at '{path}' must deserialize to a mapping.")
        return data

    def _write_state(self, directory: Path, payload: Mapping[str, Any]) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        text = yaml.safe_dump(dict(payload), sort_keys=False, allow_unicode=True)
        handle, temp_path = tempfile.mkstemp(dir=directory, prefix=".state-", suffix=".tmp")
        try:
            with os.fdopen(handle, "w", encoding="utf-8") as temp_file:
                temp_file.write(text)
            os.replace(temp_path, directory / self.STATE_FILENAME)
        except BaseException:
            Path(temp_path).unlink(missing_ok=True)
            raise


class InMemorySessionStore(SessionStore):
    """Process-local store with the same semantics as ``FileSessionStore``."""

    def __init__(self) -> None:
        super().__init__()
        self._states: dict[str, dict[str, Any]] = {}
        self._blobs: dict[str, bytes] = {}

    async def _read(self, session_id: str) -> Mapping[str, Any] | None:
        payload = self._states.get(session_id)
        return yaml.safe_load(yaml.safe_dump(payload)) if payload is not None else None

    async def _write(self, session: Session) -> None:
        self._states[session.id] = session.to_dict()

    async def _write_context_image(self, session_id: str, position: int, image: ImageData) -> str:
        path = f"memory://{session_id}/context-{position}.{extension_for(image.media_type)}"
        self._blobs[path] = image.data
        return path

    async def _read_context_image(self, path: str) -> bytes:
        try:
            return self._blobs[path]
        except KeyError as exc:
            raise FileNotFoundError(path) from exc


def _write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
