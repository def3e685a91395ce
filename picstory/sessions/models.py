"""
Domain records for PicStory generation sessions.
"""

from __future__ import annotations

import base64
import binascii
import re
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

from .errors import InvalidIndex, ValidationError

POINTS_PER_INCH = 72

DEFAULT_WIDTH_INCHES = 8.27
DEFAULT_HEIGHT_INCHES = 11.69
DEFAULT_DPI = 300

_DATA_URL_PATTERN = re.compile(r"^data:([^;]+);base64,(.*)$", re.DOTALL)


def now_ms() -> int:
    return int(time.time() * 1000)


def extension_for(media_type: str | None) -> str:
    normalized = (media_type or "").lower()
    if "jpg" in normalized or "jpeg" in normalized:
        return "jpg"
    return "png"


def sniff_media_type(data: bytes, fallback: str = "image/png") -> str:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return fallback


class BillingMode(str, Enum):
    """How quota is deducted for a session. Fixed when the session is created."""

    PRECHARGED = "precharged"
    PER_PAGE = "per_page"


class FitMode(str, Enum):
    CONTAIN = "contain"
    COVER = "cover"


class PageState(str, Enum):
    PLANNED = "planned"
    POPULATED = "populated"


@dataclass(frozen=True)
class ImageData:
    """Raw image bytes plus their media type."""

    data: bytes
    media_type: str = "image/png"

    @classmethod
    def from_payload(
        cls,
        *,
        data_url: str | None = None,
        base64_data: str | None = None,
        media_type: str | None = None,
    ) -> "ImageData":
        """
        Decode an uploaded image given either as a ``data:`` URL or bare base64.
        """
        if data_url:
            match = _DATA_URL_PATTERN.match(data_url.strip())
            if not match:
                raise ValidationError("Invalid dataUrl")
            media_type, encoded = match.group(1), match.group(2)
        elif base64_data:
            encoded = base64_data
        else:
            raise ValidationError("Provide dataUrl or base64 image")

        try:
            data = base64.b64decode(encoded, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError("Image payload is not valid base64.") from exc
        if not data:
            raise ValidationError("Image payload is empty.")
        return cls(data=data, media_type=media_type or "image/png")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ImageData":
        return cls.from_payload(
            data_url=payload.get("dataUrl") or payload.get("data_url"),
            base64_data=payload.get("base64"),
            media_type=payload.get("mimeType") or payload.get("media_type"),
        )

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.media_type or 'image/png'};base64,{encoded}"


@dataclass(frozen=True)
class PrintSpec:
    """
    Physical print target for a session.

    Values are clamped the same way on every entry point: dpi to 72..1200 and
    both dimensions to 1..30 inches.
    """

    width_inches: float = DEFAULT_WIDTH_INCHES
    height_inches: float = DEFAULT_HEIGHT_INCHES
    dpi: int = DEFAULT_DPI
    fit: FitMode = FitMode.CONTAIN
    use_case: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "width_inches", _clamp(float(self.width_inches or DEFAULT_WIDTH_INCHES), 1, 30))
        object.__setattr__(self, "height_inches", _clamp(float(self.height_inches or DEFAULT_HEIGHT_INCHES), 1, 30))
        object.__setattr__(self, "dpi", int(_clamp(int(self.dpi or DEFAULT_DPI), 72, 1200)))
        object.__setattr__(self, "fit", FitMode.COVER if str(getattr(self.fit, "value", self.fit)) == "cover" else FitMode.CONTAIN)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "PrintSpec | None":
        if not payload:
            return None
        return cls(
            width_inches=payload.get("widthInches") or payload.get("width_inches") or DEFAULT_WIDTH_INCHES,
            height_inches=payload.get("heightInches") or payload.get("height_inches") or DEFAULT_HEIGHT_INCHES,
            dpi=payload.get("dpi") or DEFAULT_DPI,
            fit=payload.get("fit") or FitMode.CONTAIN,
            use_case=payload.get("useCase") or payload.get("use_case"),
        )

    @property
    def page_size_points(self) -> tuple[float, float]:
        return self.width_inches * POINTS_PER_INCH, self.height_inches * POINTS_PER_INCH

    @property
    def pixel_size(self) -> tuple[int, int]:
        return round(self.width_inches * self.dpi), round(self.height_inches * self.dpi)

    @property
    def orientation(self) -> str:
        if abs(self.width_inches - self.height_inches) <= 0.05:
            return "square"
        return "portrait" if self.height_inches > self.width_inches else "landscape"

    def to_dict(self) -> dict[str, Any]:
        return {
            "width_inches": self.width_inches,
            "height_inches": self.height_inches,
            "dpi": self.dpi,
            "fit": self.fit.value,
            "use_case": self.use_case,
        }


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class PagePlan:
    index: int
    prompt: str
    caption: str | None = None


@dataclass(frozen=True)
class Plan:
    """Transient planning output used to seed page prompts."""

    cover_prompt: str
    items: tuple[PagePlan, ...]


@dataclass(frozen=True)
class ContextImageRef:
    """Stored reference image supplied at planning time."""

    path: str
    media_type: str = "image/png"


@dataclass
class Page:
    """One addressable page of a session. Index 0 is the cover."""

    index: int
    prompt: str
    text: str | None = None
    artifact: str | None = None
    media_type: str | None = None
    confirmed: bool = False
    revision: int = 0

    @property
    def state(self) -> PageState:
        return PageState.POPULATED if self.artifact else PageState.PLANNED

    @property
    def is_cover(self) -> bool:
        return self.index == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "prompt": self.prompt,
            "text": self.text,
            "artifact": self.artifact,
            "media_type": self.media_type,
            "confirmed": self.confirmed,
            "revision": self.revision,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Page":
        return cls(
            index=int(payload["index"]),
            prompt=str(payload.get("prompt") or ""),
            text=payload.get("text"),
            artifact=payload.get("artifact"),
            media_type=payload.get("media_type"),
            confirmed=bool(payload.get("confirmed", False)),
            revision=int(payload.get("revision", 0)),
        )


@dataclass
class Session:
    """
    Durable record of one multi-page generation job.

    ``pages`` always holds the cover followed by ``page_count`` interior pages
    once the session has been planned; indices never move.
    """

    id: str
    kind: str
    title: str
    base_prompt: str
    page_count: int
    billing_mode: BillingMode
    pages: list[Page]
    options: dict[str, Any] = field(default_factory=dict)
    print_spec: PrintSpec | None = None
    owner_id: str | None = None
    context_images: list[ContextImageRef] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    version: int = 0

    @property
    def precharged(self) -> bool:
        return self.billing_mode is BillingMode.PRECHARGED

    @property
    def cover(self) -> Page:
        return self.pages[0]

    @property
    def interior(self) -> list[Page]:
        return self.pages[1:]

    def ensure_valid_index(self, index: int) -> None:
        if not isinstance(index, int) or isinstance(index, bool) or index < 0 or index > self.page_count:
            raise InvalidIndex(index, self.page_count)

    def page(self, index: int) -> Page:
        self.ensure_valid_index(index)
        return self.pages[index]

    def replace_page(self, page: Page) -> None:
        self.ensure_valid_index(page.index)
        self.pages[page.index] = page

    def missing_indices(self) -> list[int]:
        return [page.index for page in self.pages if not page.artifact]

    @property
    def is_complete(self) -> bool:
        return not self.missing_indices()

    def copy(self) -> "Session":
        return replace(
            self,
            pages=[replace(page) for page in self.pages],
            options=dict(self.options),
            context_images=list(self.context_images),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "title": self.title,
            "base_prompt": self.base_prompt,
            "page_count": self.page_count,
            "billing_mode": self.billing_mode.value,
            "owner_id": self.owner_id,
            "options": dict(self.options),
            "print_spec": self.print_spec.to_dict() if self.print_spec else None,
            "context_images": [
                {"path": ref.path, "media_type": ref.media_type} for ref in self.context_images
            ],
            "pages": [page.to_dict() for page in self.pages],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Session":
        try:
            pages = [Page.from_dict(entry) for entry in payload["pages"]]
            return cls(
                id=str(payload["id"]),
                kind=str(payload["kind"]),
                title=str(payload["title"]),
                base_prompt=str(payload["base_prompt"]),
                page_count=int(payload["page_count"]),
                billing_mode=BillingMode(payload.get("billing_mode", BillingMode.PER_PAGE.value)),
                pages=pages,
                options=dict(payload.get("options") or {}),
                print_spec=PrintSpec.from_mapping(payload.get("print_spec")),
                owner_id=payload.get("owner_id"),
                context_images=[
                    ContextImageRef(path=str(entry["path"]), media_type=str(entry.get("media_type") or "image/png"))
                    for entry in payload.get("context_images") or []
                ],
                created_at=int(payload.get("created_at", 0)),
                updated_at=int(payload.get("updated_at", 0)),
                version=int(payload.get("version", 0)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid session payload: {exc}") from exc

    def to_public_dict(self, url_for: Callable[[str], str] | None = None) -> dict[str, Any]:
        """
        Client-facing view of the session; artifact references become image URLs.
        """

        def _page(page: Page) -> dict[str, Any]:
            image_url = None
            if page.artifact:
                image_url = url_for(page.artifact) if url_for else page.artifact
            return {
                "index": page.index,
                "prompt": page.prompt,
                "text": page.text,
                "confirmed": page.confirmed,
                "imageUrl": image_url,
            }

        return {
            "id": self.id,
            "kind": self.kind,
            "title": self.title,
            "basePrompt": self.base_prompt,
            "options": dict(self.options),
            "pageCount": self.page_count,
            "cover": _page(self.cover),
            "items": [_page(page) for page in self.interior],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class PlanRequest:
    """Input for planning a new session."""

    title: str
    base_prompt: str
    page_count: int
    options: Mapping[str, Any] = field(default_factory=dict)
    reference_images: Sequence[ImageData] = ()
    owner_id: str | None = None
    print_spec: PrintSpec | None = None
    background: bool = False


@dataclass(frozen=True)
class FinalizedDocument:
    document_id: str
    title: str
    page_count: int
