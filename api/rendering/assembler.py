"""Document assembly - turn a template plus values into a finished PDF.

Three template kinds are supported:
- SVG: placeholders resolved in the markup, QR embedded as a data URI,
  rendered with CairoSVG and fitted onto a fixed page format
- HTML: placeholders resolved, QR referenced from an in-memory archive,
  laid out with PyMuPDF's Story onto pages of the fixed format
- PDF: tags located in the laid-out text, removed, covered with an opaque box
  and redrawn with the replacement on the original baseline

Values are XML-escaped before they go into SVG or HTML markup; PDF templates
get the raw text.

Output is written to a temporary sibling and renamed into place, so a failed
render never leaves a partial file at the destination. The assembler has no
knowledge of the database.
"""

from __future__ import annotations

import base64
import html
import logging
import os
from collections import defaultdict
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import fitz

from models import TemplateKind
from rendering.engine import RenderEngine
from rendering.pdf_tags import TagPosition, replacement_for, scan_tags
from rendering.placeholders import embed_qr, resolve

logger = logging.getLogger(__name__)

HTML_QR_NAME = "qr.png"
HTML_MARGIN = 36

# Fallback QR placement on PDF templates: bottom-right corner (points)
PDF_QR_SIZE = 120
PDF_QR_MARGIN = 20

# Extra points around a tag box when painting its cover
COVER_MARGIN = 1

# Fraction of the font size trimmed from each side of a tag box before
# redaction, so glyphs touching the tag are not removed with it
REDACT_INSET = 0.15

# Base-14 faces only encode Latin-1; other text falls back to this font
FALLBACK_FONT = "cjk"


class RenderError(Exception):
    """Raised when a document could not be rendered."""


@dataclass(frozen=True)
class TemplateSource:
    """What the assembler needs to know about a template."""

    kind: TemplateKind
    body: str | None = None
    path: Path | None = None

    def __post_init__(self) -> None:
        if self.kind.is_vector and self.body is None:
            raise ValueError(f"{self.kind.value} template requires a body")
        if not self.kind.is_vector and self.path is None:
            raise ValueError("pdf template requires a file path")


def qr_data_uri(qr_png: bytes) -> str:
    encoded = base64.b64encode(qr_png).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def resolve_markup(
    template: TemplateSource, values: Mapping[str, str], qr_png: bytes
) -> str:
    """Fully substituted vector markup with the QR image embedded."""
    if not template.kind.is_vector or template.body is None:
        raise ValueError("Only vector templates have markup to resolve")

    escaped = {key: html.escape(value, quote=True) for key, value in values.items()}
    resolved = resolve(template.body, escaped)
    if template.kind is TemplateKind.HTML:
        return embed_qr(resolved, template.kind, HTML_QR_NAME)
    return embed_qr(resolved, template.kind, qr_data_uri(qr_png))


# --- Renderers (blocking; run inside the engine's worker threads) ---


def _fit_onto_page(pdf_bytes: bytes, page_rect: fitz.Rect, destination: Path) -> None:
    """Place every page of ``pdf_bytes`` onto a page of ``page_rect`` size."""
    with fitz.open(stream=pdf_bytes, filetype="pdf") as src, fitz.open() as out:
        for page_number in range(src.page_count):
            page = out.new_page(width=page_rect.width, height=page_rect.height)
            page.show_pdf_page(page.rect, src, page_number, keep_proportion=True)
        out.save(str(destination), garbage=3, deflate=True)


def render_svg(markup: str, destination: Path, page_format: str) -> None:
    try:
        import cairosvg
    except OSError as e:
        if "cairo" in str(e).lower():
            raise RuntimeError(
                "SVG rendering requires the Cairo library. "
                "On macOS: brew install cairo. "
                "On Ubuntu/Debian: apt-get install libcairo2-dev. "
                "On Alpine: apk add cairo-dev."
            ) from e
        raise

    pdf_bytes = cairosvg.svg2pdf(bytestring=markup.encode("utf-8"))
    _fit_onto_page(pdf_bytes, fitz.paper_rect(page_format), destination)


def render_html(
    markup: str, qr_png: bytes, destination: Path, page_format: str
) -> None:
    archive = fitz.Archive()
    archive.add(qr_png, HTML_QR_NAME)
    story = fitz.Story(html=markup, archive=archive)

    mediabox = fitz.paper_rect(page_format)
    where = mediabox + (HTML_MARGIN, HTML_MARGIN, -HTML_MARGIN, -HTML_MARGIN)

    writer = fitz.DocumentWriter(str(destination))
    try:
        more = 1
        while more:
            device = writer.begin_page(mediabox)
            more, _ = story.place(where)
            story.draw(device)
            writer.end_page()
    finally:
        writer.close()


def _background_color(page: fitz.Page, rect: fitz.Rect) -> tuple[float, float, float]:
    """Sample the page just left of ``rect``; white if sampling fails."""
    try:
        cy = (rect.y0 + rect.y1) / 2
        clip = fitz.Rect(rect.x0 - 2, cy - 1, rect.x0, cy + 1) & page.rect
        if clip.is_empty:
            return (1.0, 1.0, 1.0)
        pix = page.get_pixmap(clip=clip, dpi=72, alpha=False)
        r, g, b = pix.samples[:3]
        return (r / 255.0, g / 255.0, b / 255.0)
    except (RuntimeError, ValueError):
        return (1.0, 1.0, 1.0)


def _qr_rect_at(position: TagPosition) -> fitz.Rect:
    x0, y0, _, _ = position.rect
    return fitz.Rect(x0, y0, x0 + PDF_QR_SIZE, y0 + PDF_QR_SIZE)


def _fallback_qr_rect(page: fitz.Page) -> fitz.Rect:
    width, height = page.rect.width, page.rect.height
    return fitz.Rect(
        width - PDF_QR_SIZE - PDF_QR_MARGIN,
        height - PDF_QR_SIZE - PDF_QR_MARGIN,
        width - PDF_QR_MARGIN,
        height - PDF_QR_MARGIN,
    )


def _redact_area(rect: fitz.Rect, font_size: float) -> fitz.Rect:
    """Inner strip of a tag box that only the tag's own glyphs overlap."""
    dx = min(font_size * REDACT_INSET, rect.width / 4)
    cy = (rect.y0 + rect.y1) / 2
    dy = min(font_size * REDACT_INSET, rect.height / 4)
    return fitz.Rect(rect.x0 + dx, cy - dy, rect.x1 - dx, cy + dy)


def _is_latin1(text: str) -> bool:
    return all(ord(ch) < 256 for ch in text)


def _font_runs(text: str, base: str) -> list[tuple[fitz.Font, str]]:
    """Split ``text`` into runs drawable with ``base`` or the fallback font."""
    primary, fallback = fitz.Font(base), fitz.Font(FALLBACK_FONT)
    runs: list[tuple[fitz.Font, str]] = []
    for ch in text:
        font = primary if primary.has_glyph(ord(ch)) else fallback
        if runs and runs[-1][0] is font:
            runs[-1] = (font, runs[-1][1] + ch)
        else:
            runs.append((font, ch))
    return runs


def _draw_replacement(page: fitz.Page, position: TagPosition, text: str) -> None:
    base = "hebo" if position.bold else "helv"
    if _is_latin1(text):
        page.insert_text(
            position.origin,
            text,
            fontsize=position.font_size,
            fontname=base,
            color=position.color,
        )
        return

    writer = fitz.TextWriter(page.rect)
    point = fitz.Point(position.origin)
    for font, run in _font_runs(text, base):
        _, point = writer.append(point, run, font=font, fontsize=position.font_size)
    writer.write_text(page, color=position.color)


def render_pdf(
    template_path: Path,
    values: Mapping[str, str],
    qr_png: bytes,
    destination: Path,
) -> None:
    with fitz.open(str(template_path)) as doc:
        by_page: dict[int, list[TagPosition]] = defaultdict(list)
        for position in scan_tags(doc):
            by_page[position.page].append(position)

        qr_positions = [p for ps in by_page.values() for p in ps if p.is_qr]

        for page in doc:
            covers: list[tuple[fitz.Rect, tuple[float, float, float]]] = []
            draws: list[tuple[TagPosition, str]] = []

            for position in by_page.get(page.number, []):
                if position.is_qr:
                    text = None
                else:
                    text = replacement_for(position, values)
                    if text is None:
                        continue

                rect = fitz.Rect(position.rect)
                cover = rect + (
                    -COVER_MARGIN,
                    -COVER_MARGIN,
                    COVER_MARGIN,
                    COVER_MARGIN,
                )
                covers.append((cover, _background_color(page, cover)))
                page.add_redact_annot(
                    _redact_area(rect, position.font_size), fill=False
                )
                if text is not None:
                    draws.append((position, text))

            if covers:
                page.apply_redactions(
                    images=fitz.PDF_REDACT_IMAGE_NONE,
                    graphics=fitz.PDF_REDACT_LINE_ART_NONE,
                )
            for rect, fill in covers:
                page.draw_rect(rect, color=None, fill=fill, overlay=True)
            for position, text in draws:
                _draw_replacement(page, position, text)

            if not qr_positions:
                page.insert_image(_fallback_qr_rect(page), stream=qr_png)
            for position in qr_positions:
                if position.page == page.number:
                    page.insert_image(_qr_rect_at(position), stream=qr_png)

        doc.save(str(destination), garbage=3, deflate=True)


class DocumentAssembler:
    """Renders templates to PDF files through a shared RenderEngine."""

    def __init__(self, engine: RenderEngine, page_format: str = "a4-l") -> None:
        self.engine = engine
        self.page_format = page_format

    def _render(
        self,
        template: TemplateSource,
        values: Mapping[str, str],
        qr_png: bytes,
        destination: Path,
    ) -> None:
        if template.kind is TemplateKind.PDF:
            render_pdf(template.path, values, qr_png, destination)
            return

        markup = resolve_markup(template, values, qr_png)
        if template.kind is TemplateKind.HTML:
            render_html(markup, qr_png, destination, self.page_format)
        else:
            render_svg(markup, destination, self.page_format)

    async def assemble(
        self,
        template: TemplateSource,
        values: Mapping[str, str],
        qr_png: bytes,
        destination: Path,
    ) -> Path:
        """Render ``template`` to ``destination``.

        Raises:
            RenderError: If the rendering engine fails for any reason. The
                destination is left untouched in that case.
        """
        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = destination.with_name(f".{destination.name}.part")

        async with self.engine.session() as session:
            try:
                await session.run(self._render, template, values, qr_png, tmp_path)
                os.replace(tmp_path, destination)
            except Exception as e:
                tmp_path.unlink(missing_ok=True)
                logger.exception(
                    "render.failed",
                    extra={"kind": template.kind.value, "destination": str(destination)},
                )
                raise RenderError(f"Failed to render {template.kind.value} template") from e

        logger.info(
            "render.complete",
            extra={"kind": template.kind.value, "destination": str(destination)},
        )
        return destination
