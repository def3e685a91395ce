"""
Orchestrates PicStory sessions from planning through page renders to the final PDF.
"""

from __future__ import annotations

import asyncio
import logging
import zipfile
from dataclasses import replace
from io import BytesIO
from typing import Any, Callable, Sequence

from picstory.ai_generation import ReplicateImageGenerator, build_page_prompt
from picstory.pdf_generation import DocumentAssembler
from picstory.planning import LiteLLMPlanner, LiteLLMPromptEnhancer, LiteLLMReferenceSummarizer
from picstory.sessions.artifacts import LocalArtifactStore, LocalDocumentStore
from picstory.sessions.errors import (
    GenerationFailure,
    ImageEmbedFailure,
    IncompletePages,
    PlanShapeMismatch,
    ValidationError,
    WorkflowError,
)
from picstory.sessions.interfaces import (
    ArtifactStore,
    DocumentStore,
    ImageBackend,
    PlanningBackend,
    PromptEnhancer,
    QuotaLedger,
    ReferenceSummarizer,
)
from picstory.sessions.models import (
    BillingMode,
    FinalizedDocument,
    ImageData,
    PagePlan,
    Plan,
    PlanRequest,
    PrintSpec,
    Session,
    extension_for,
    now_ms,
    sniff_media_type,
)
from picstory.sessions.policies import POLICIES, ContentPolicy, get_policy
from picstory.sessions.store import MAX_CONTEXT_IMAGES, FileSessionStore, SessionStore

from .background import BackgroundCompletionWorker
from .context_window import ContextWindowSelector
from .queue import GenerationQueue
from .settings import WorkflowSettings

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], None]


class WorkflowEngine:
    """
    Session-based generation and review workflow for one content kind.

    Collaborators default to the shipped implementations (LiteLLM planning,
    Replicate renders, local file storage) configured from the environment;
    pass explicit instances to embed the engine or to test it.
    """

    def __init__(
        self,
        *,
        policy: ContentPolicy | str | None = None,
        settings: WorkflowSettings | None = None,
        session_store: SessionStore | None = None,
        artifact_store: ArtifactStore | None = None,
        document_store: DocumentStore | None = None,
        image_backend: ImageBackend | None = None,
        planner: PlanningBackend | None = None,
        reference_summarizer: ReferenceSummarizer | None = None,
        prompt_enhancer: PromptEnhancer | None = None,
        assembler: DocumentAssembler | None = None,
        ledger: QuotaLedger | None = None,
        queue: GenerationQueue | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        self._settings = settings or WorkflowSettings.from_env()
        if policy is None:
            policy = self._settings.default_kind
        self._policy = get_policy(policy) if isinstance(policy, str) else policy

        self._sessions = session_store or FileSessionStore(self._settings.sessions_dir)
        self._artifacts = artifact_store or LocalArtifactStore(self._settings.sessions_dir)
        self._documents = document_store or LocalDocumentStore(self._settings.documents_dir)
        self._images = image_backend or ReplicateImageGenerator()
        self._planner = planner or LiteLLMPlanner(kind=self._policy.kind)
        self._summarizer = reference_summarizer or LiteLLMReferenceSummarizer()
        self._enhancer = prompt_enhancer or LiteLLMPromptEnhancer()
        self._assembler = assembler or DocumentAssembler()
        self._ledger = ledger
        self._queue = queue or GenerationQueue(self._settings.max_concurrency)
        self._selector = ContextWindowSelector(session_store=self._sessions, artifact_store=self._artifacts)
        self._worker = BackgroundCompletionWorker(self)
        self._progress_callback = progress_callback

    @property
    def policy(self) -> ContentPolicy:
        return self._policy

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @property
    def queue(self) -> GenerationQueue:
        return self._queue

    # ------------------------------------------------------------------ planning

    async def plan(self, request: PlanRequest) -> Session:
        """
        Plan a new session: one planning call, then a persisted session with
        every page planned and no images.
        """
        title = (request.title or "").strip()
        base_prompt = (request.base_prompt or "").strip()
        if not title or not base_prompt:
            raise ValidationError("title and basePrompt are required")
        page_count = request.page_count
        if not isinstance(page_count, int) or isinstance(page_count, bool):
            raise ValidationError("pageCount must be an integer")
        if page_count < 1 or page_count > self._policy.max_pages:
            raise ValidationError(f"pageCount must be between 1 and {self._policy.max_pages}")

        if self._policy.billing_mode is BillingMode.PRECHARGED:
            await self._charge(request.owner_id, 1 + page_count)

        references = list(request.reference_images)[:MAX_CONTEXT_IMAGES]
        planning_options = dict(request.options)
        if references:
            description = await self._summarizer.describe(references)
            if description:
                planning_options["reference_description"] = description

        self._notify("plan:requesting", title=title, page_count=page_count)
        try:
            raw_plan = await self._planner.plan(title, base_prompt, page_count, planning_options)
        except WorkflowError:
            raise
        except Exception as exc:
            raise GenerationFailure(f"Planning backend failed: {exc}") from exc
        plan = _validated_plan(raw_plan, page_count)

        captions = [item.caption for item in plan.items] if self._policy.captions_enabled else None
        session = await self._sessions.create(
            kind=self._policy.kind,
            title=title,
            base_prompt=base_prompt,
            page_count=page_count,
            billing_mode=self._policy.billing_mode,
            cover_prompt=plan.cover_prompt,
            page_prompts=[item.prompt for item in plan.items],
            captions=captions,
            options=request.options,
            print_spec=request.print_spec,
            owner_id=request.owner_id,
        )
        if references:
            session = await self._sessions.store_context_images(session.id, references)
        self._notify("plan:ready", session_id=session.id, page_count=page_count)

        if request.background:
            self.complete_missing(session.id)
        return session

    async def get_session(self, session_id: str) -> Session:
        return await self._sessions.require(session_id)

    async def enhance_prompt(self, text: str, target: str = "theme") -> str:
        """Rewrite a theme, cover or interior prompt for this engine's content kind."""
        return await self._enhancer.enhance(text, kind=self._policy.kind, target=target)

    # ------------------------------------------------------------------ page metadata

    async def update_prompt(self, session_id: str, index: int, prompt: str) -> Session:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValidationError("prompt is required")
        new_prompt = prompt.strip()

        def _apply(session: Session) -> bool:
            page = session.page(index)
            if page.prompt == new_prompt:
                return False
            page.prompt = new_prompt
            return True

        session, _ = await self._sessions.transact(session_id, _apply)
        return session

    async def update_text(self, session_id: str, index: int, text: str | None) -> Session:
        new_text = text if text and text.strip() else None

        def _apply(session: Session) -> bool:
            page = session.page(index)
            if page.text == new_text:
                return False
            page.text = new_text
            return True

        session, _ = await self._sessions.transact(session_id, _apply)
        return session

    async def confirm(self, session_id: str, index: int, confirmed: bool = True) -> Session:
        flag = bool(confirmed)

        def _apply(session: Session) -> bool:
            page = session.page(index)
            if page.confirmed == flag:
                return False
            page.confirmed = flag
            return True

        session, _ = await self._sessions.transact(session_id, _apply)
        return session

    # ------------------------------------------------------------------ renders

    async def generate(
        self,
        session_id: str,
        index: int,
        *,
        context_image: ImageData | None = None,
        wait: bool = True,
    ) -> Session:
        """
        Render page ``index`` from its stored prompt.

        With ``wait=False`` the render is queued and the current (pre-render)
        session is returned straight away; quota is still charged up front so
        the caller sees ``InsufficientQuota``.
        """
        return await self._dispatch(session_id, index, edit=False, prompt=None, explicit=context_image, wait=wait)

    async def edit(
        self,
        session_id: str,
        index: int,
        *,
        prompt: str | None = None,
        context_image: ImageData | None = None,
        wait: bool = True,
    ) -> Session:
        """
        Re-render page ``index`` anchored on its current image.

        ``prompt`` overrides the stored prompt for this call only.
        """
        return await self._dispatch(session_id, index, edit=True, prompt=prompt, explicit=context_image, wait=wait)

    async def _dispatch(
        self,
        session_id: str,
        index: int,
        *,
        edit: bool,
        prompt: str | None,
        explicit: ImageData | None,
        wait: bool,
    ) -> Session:
        session = await self._sessions.require(session_id)
        session.ensure_valid_index(index)
        await self._charge_render(session)

        if wait:
            return await self.render_page(
                session_id, index, edit=edit, prompt=prompt, explicit=explicit, charge=False
            )

        self._queue.submit(
            lambda: self.render_page(
                session_id, index, edit=edit, prompt=prompt, explicit=explicit, charge=False
            ),
            name=f"{'edit' if edit else 'generate'}-{session_id}-{index}",
        )
        return session

    async def render_page(
        self,
        session_id: str,
        index: int,
        *,
        edit: bool = False,
        prompt: str | None = None,
        explicit: ImageData | None = None,
        charge: bool = True,
    ) -> Session:
        """
        Shared render path for foreground calls, queued calls and the background sweep.

        The new image is committed only if the page still holds the artifact and
        revision observed before the backend call; otherwise the image is
        discarded and the current session is returned unchanged.
        """
        session = await self._sessions.require(session_id)
        page = session.page(index)
        policy = POLICIES.get(session.kind, self._policy)
        expected_artifact = page.artifact
        expected_revision = page.revision

        if charge:
            await self._charge_render(session)

        prompt_text = prompt.strip() if prompt and prompt.strip() else page.prompt
        final_prompt = build_page_prompt(
            prompt_text,
            policy=policy,
            title=session.title,
            is_cover=page.is_cover,
            print_spec=session.print_spec,
        )

        anchor = await self._read_anchor(session, index) if edit and page.artifact else None
        window = await self._selector.select(
            session,
            index,
            policy.edit_history_size if edit else policy.history_size,
            explicit=explicit,
            anchor=anchor,
        )

        self._notify(
            "page:rendering",
            session_id=session_id,
            index=index,
            references=len(window),
            prior_indices=window.prior_indices,
            context_images=window.context_image_count,
            anchored=window.has_anchor,
            explicit=window.has_explicit,
        )
        try:
            image = await self._images.generate(final_prompt, window.references, _render_print_spec(session, policy))
        except WorkflowError:
            raise
        except Exception as exc:
            raise GenerationFailure(f"Image generation failed for page {index}: {exc}") from exc

        reference = await self._artifacts.write(session_id, index, image)

        def _commit(current: Session) -> bool:
            slot = current.page(index)
            if slot.artifact != expected_artifact or slot.revision != expected_revision:
                return False
            slot.artifact = reference
            slot.media_type = image.media_type
            slot.revision += 1
            return True

        updated, committed = await self._sessions.transact(session_id, _commit)
        if not committed:
            logger.info(
                "Discarding stale render for session %s page %d; the page changed during generation.",
                session_id,
                index,
            )
            await self._artifacts.discard(reference)
        self._notify("page:done", session_id=session_id, index=index, committed=committed)
        return updated

    async def replace(self, session_id: str, index: int, image: ImageData) -> Session:
        """Store an uploaded image for page ``index``; uploads always win."""
        session = await self._sessions.require(session_id)
        session.ensure_valid_index(index)
        if not image.data:
            raise ValidationError("Image payload is empty.")

        reference = await self._artifacts.write(session_id, index, image)

        def _commit(current: Session) -> bool:
            slot = current.page(index)
            current.replace_page(
                replace(slot, artifact=reference, media_type=image.media_type, revision=slot.revision + 1)
            )
            return True

        updated, _ = await self._sessions.transact(session_id, _commit)
        return updated

    def complete_missing(self, session_id: str) -> "asyncio.Task[Any]":
        """Queue a background sweep over the session's empty pages."""
        return self._queue.submit(lambda: self._worker.sweep(session_id), name=f"sweep-{session_id}")

    async def drain(self) -> None:
        await self._queue.drain()

    # ------------------------------------------------------------------ one-shot

    async def create_book(self, request: PlanRequest) -> FinalizedDocument:
        """
        Plan, render every page and assemble the PDF in one call.

        Pages render in order so each one sees its predecessors as context.
        With ``request.background`` the planning call queues the sweep and this
        waits for the queue instead. Any page still empty afterwards makes the
        call fail with :class:`IncompletePages`; the session is kept either way.
        """
        session = await self.plan(request)
        if request.background:
            await self.drain()
        else:
            for index in range(session.page_count + 1):
                await self.generate(session.id, index)
        return await self.finalize(session.id)

    # ------------------------------------------------------------------ exports

    async def export_images(self, session_id: str) -> bytes:
        """
        Bundle the session's page images into a ZIP archive, cover first.

        Empty pages are left out; entries are named ``page-000.png`` and so on
        by page index.
        """
        session = await self._sessions.require(session_id)
        entries: list[tuple[str, bytes]] = []
        for page in session.pages:
            if not page.artifact:
                continue
            data = await self._artifacts.read(page.artifact)
            media_type = page.media_type or sniff_media_type(data)
            entries.append((f"page-{page.index:03d}.{extension_for(media_type)}", data))
        return await asyncio.to_thread(_zip_entries, entries)

    async def list_documents(self, owner_id: str | None = None, limit: int = 10) -> list[dict[str, Any]]:
        """Most recent finished documents, newest first, optionally for one owner."""
        return await self._documents.list_recent(owner_id=owner_id, limit=limit)

    # ------------------------------------------------------------------ finalize

    async def finalize(self, session_id: str) -> FinalizedDocument:
        """
        Assemble every page image into one PDF and persist it.

        Never renders: pages without an image make the call fail with
        :class:`IncompletePages` listing all of them.
        """
        session = await self._sessions.require(session_id)
        missing = session.missing_indices()
        if missing:
            raise IncompletePages(missing)

        images: list[ImageData] = []
        for page in session.pages:
            try:
                data = await self._artifacts.read(page.artifact or "")
            except Exception as exc:
                raise ImageEmbedFailure(f"Failed to read image for page {page.index}") from exc
            images.append(ImageData(data=data, media_type=page.media_type or sniff_media_type(data)))

        texts: list[str | None] | None = None
        if any(page.text and page.text.strip() for page in session.pages):
            texts = [page.text for page in session.pages]

        page_size = session.print_spec.page_size_points if session.print_spec else None
        fit = session.print_spec.fit if session.print_spec else "contain"
        self._notify("finalize:assembling", session_id=session_id, pages=len(images))
        data = await asyncio.to_thread(self._assembler.build, images, texts, page_size, fit)

        metadata: dict[str, Any] = {
            "session_id": session.id,
            "kind": session.kind,
            "title": session.title,
            "owner_id": session.owner_id,
            "page_count": session.page_count,
            "print_spec": session.print_spec.to_dict() if session.print_spec else None,
            "created_at": now_ms(),
        }
        document_id = await self._documents.save(data, metadata)
        self._notify("finalize:done", session_id=session_id, document_id=document_id)
        return FinalizedDocument(document_id=document_id, title=session.title, page_count=session.page_count)

    # ------------------------------------------------------------------ helpers

    async def _read_anchor(self, session: Session, index: int) -> ImageData | None:
        page = session.page(index)
        try:
            data = await self._artifacts.read(page.artifact or "")
        except Exception:
            logger.warning(
                "Current image for session %s page %d is unreadable; editing without it.",
                session.id,
                index,
                exc_info=True,
            )
            return None
        return ImageData(data=data, media_type=page.media_type or sniff_media_type(data))

    async def _charge_render(self, session: Session) -> None:
        if session.precharged:
            return
        await self._charge(session.owner_id, 1)

    async def _charge(self, account_id: str | None, amount: int) -> None:
        if self._ledger is None or not account_id:
            return
        remaining = await self._ledger.charge(account_id, amount)
        logger.debug("Charged %d credit(s) to %s; %d remaining.", amount, account_id, remaining)

    def _notify(self, stage: str, **payload: Any) -> None:
        if self._progress_callback is not None:
            self._progress_callback(stage, payload)


def _zip_entries(entries: Sequence[tuple[str, bytes]]) -> bytes:
    buffer = BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, data in entries:
            archive.writestr(name, data)
    return buffer.getvalue()


def _render_print_spec(session: Session, policy: ContentPolicy) -> PrintSpec:
    spec = session.print_spec or PrintSpec()
    if spec.use_case:
        return spec
    return replace(spec, use_case=policy.use_case)


def _validated_plan(plan: Plan, page_count: int) -> Plan:
    cover_prompt = (plan.cover_prompt or "").strip()
    if not cover_prompt:
        raise PlanShapeMismatch("Missing cover prompt in plan.")
    items: Sequence[PagePlan] = plan.items
    if len(items) != page_count:
        raise PlanShapeMismatch(f"Expected {page_count} interior page prompts, got {len(items)}.")
    normalized: list[PagePlan] = []
    for position, item in enumerate(items, start=1):
        prompt = (item.prompt or "").strip()
        if not prompt:
            raise PlanShapeMismatch(f"Plan item {position} has an empty prompt.")
        normalized.append(PagePlan(index=position, prompt=prompt, caption=item.caption or None))
    return Plan(cover_prompt=cover_prompt, items=tuple(normalized))
