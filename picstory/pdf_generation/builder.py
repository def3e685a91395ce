"""
High-level utilities for assembling PicStory page renders into printable PDFs.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from io import BytesIO
from typing import Sequence

from PIL import Image, UnidentifiedImageError
from reportlab.lib import colors
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfgen import canvas

from picstory.sessions.errors import ImageEmbedFailure
from picstory.sessions.models import FitMode, ImageData

TEXT_FONT = "Helvetica"


def decode_image(image: ImageData) -> Image.Image:
    """
    Decode page bytes, honouring the declared media type.

    PNG and JPEG types are decoded as such; anything else is tried as PNG first
    and then as JPEG. Raises :class:`ImageEmbedFailure` when nothing works.
    """
    media_type = (image.media_type or "").lower()
    if "png" in media_type:
        attempts = [["PNG"]]
    elif "jpg" in media_type or "jpeg" in media_type:
        attempts = [["JPEG"]]
    else:
        attempts = [["PNG"], ["JPEG"]]

    for formats in attempts:
        try:
            decoded = Image.open(BytesIO(image.data), formats=formats)
            decoded.load()
            return decoded
        except (UnidentifiedImageError, OSError):
            continue
    raise ImageEmbedFailure("Failed to embed image into PDF")


def wrap_text(text: str, max_width: float, font_size: float, font_name: str = TEXT_FONT) -> list[str]:
    lines: list[str] = []
    line = ""
    for word in (text or "").split():
        candidate = f"{line} {word}" if line else word
        if line and pdfmetrics.stringWidth(candidate, font_name, font_size) > max_width:
            lines.append(line)
            line = word
        else:
            line = candidate
    if line:
        lines.append(line)
    return lines


@dataclass(frozen=True)
class TextBand:
    margin: float
    font_size: float
    height: float
    lines: tuple[tuple[float, str], ...]


def layout_text_band(text: str, width: float, height: float, font_name: str = TEXT_FONT) -> TextBand:
    """
    Place caption lines inside the white band at the bottom of a page.

    The band is capped at 35% of the page height; lines whose baseline would
    fall below the bottom padding are dropped, the first one included.
    """
    margin = max(16, math.floor(width * 0.04))
    font_size = max(12, math.floor(width * 0.018))
    lines = wrap_text(text, width - margin * 2, font_size, font_name)
    line_height = font_size * 1.35
    padding = math.floor(font_size * 0.8)
    band_height = min(
        max(80, math.ceil(len(lines) * line_height) + padding * 2),
        math.floor(height * 0.35),
    )

    placed: list[tuple[float, str]] = []
    cursor_y = band_height - padding - font_size
    for line in lines:
        if cursor_y < padding:
            break
        placed.append((cursor_y, line))
        cursor_y -= line_height
    return TextBand(margin=margin, font_size=font_size, height=band_height, lines=tuple(placed))


class DocumentAssembler:
    """
    Render an ordered list of page images into a single PDF.

    Without a page size every page takes the pixel dimensions of its image and
    the image is drawn edge to edge. With a page size every page is exactly that
    many points and the image is scaled to ``contain`` or ``cover`` it, centred,
    with overflow clipped to the page.
    """

    def __init__(self, *, font_name: str = TEXT_FONT) -> None:
        self.font_name = font_name

    def build(
        self,
        images: Sequence[ImageData],
        texts: Sequence[str | None] | None = None,
        page_size: tuple[float, float] | None = None,
        fit: FitMode | str = FitMode.CONTAIN,
    ) -> bytes:
        fit_mode = FitMode(getattr(fit, "value", fit))
        buffer = BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=page_size or (612, 792))

        for position, image in enumerate(images):
            decoded = decode_image(image)
            img_width, img_height = decoded.size
            width, height = page_size if page_size else (float(img_width), float(img_height))
            pdf.setPageSize((width, height))

            self._draw_image(pdf, ImageReader(decoded), img_width, img_height, width, height, fit_mode, page_size is None)

            text = texts[position] if texts and position < len(texts) else None
            if text and text.strip():
                self._draw_text_band(pdf, text, width, height)

            pdf.showPage()

        pdf.save()
        return buffer.getvalue()

    # ------------------------------------------------------------------ images

    @staticmethod
    def _draw_image(
        pdf: canvas.Canvas,
        reader: ImageReader,
        img_width: int,
        img_height: int,
        width: float,
        height: float,
        fit: FitMode,
        natural: bool,
    ) -> None:
        if natural:
            pdf.drawImage(reader, 0, 0, width, height, mask="auto")
            return

        if fit is FitMode.COVER:
            scale = max(width / img_width, height / img_height)
        else:
            scale = min(width / img_width, height / img_height)
        draw_width = img_width * scale
        draw_height = img_height * scale
        x = (width - draw_width) / 2
        y = (height - draw_height) / 2

        pdf.saveState()
        clip = pdf.beginPath()
        clip.rect(0, 0, width, height)
        pdf.clipPath(clip, stroke=0, fill=0)
        pdf.drawImage(reader, x, y, draw_width, draw_height, mask="auto")
        pdf.restoreState()

    # ------------------------------------------------------------------ captions

    def _draw_text_band(self, pdf: canvas.Canvas, text: str, width: float, height: float) -> None:
        band = layout_text_band(text, width, height, self.font_name)

        pdf.saveState()
        pdf.setFillColor(colors.white)
        pdf.rect(0, 0, width, band.height, stroke=0, fill=1)

        pdf.setFillColor(colors.black)
        pdf.setFont(self.font_name, band.font_size)
        for y, line in band.lines:
            pdf.drawString(band.margin, y, line)
        pdf.restoreState()
