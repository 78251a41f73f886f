"""Locate placeholder tags in paginated (PDF) templates.

A PDF has no markup to substitute into, so tags are found by scanning the laid
out text spans of every page. For each occurrence we record where it sits and
how it was styled so the assembler can cover it and draw the replacement on
the same baseline.

Tags are expected to sit inside a single text span (the usual result of typing
``{{NAME}}`` in a design tool). A tag split across spans is not detected.
"""

from collections.abc import Mapping
from dataclasses import dataclass

import fitz

from rendering.placeholders import PLACEHOLDER_RE, QR_KEY, resolve

# Span flag bit PyMuPDF sets for bold fonts
_BOLD_FLAG = 1 << 4


@dataclass(frozen=True)
class TagPosition:
    """One laid-out occurrence of a ``{{tag}}`` on a page."""

    page: int
    key: str
    text: str
    rect: tuple[float, float, float, float]
    origin: tuple[float, float]
    font_size: float
    color: tuple[float, float, float]
    bold: bool = False

    @property
    def is_qr(self) -> bool:
        return self.key.upper() == QR_KEY


def _span_color(span: dict) -> tuple[float, float, float]:
    return tuple(fitz.sRGB_to_pdf(span.get("color", 0)))


def _tag_rect(page: fitz.Page, tag: str, span: dict, occurrence: int) -> fitz.Rect:
    """Exact rectangle of the n-th ``tag`` inside ``span``.

    Falls back to the whole span box when the text search comes up empty
    (e.g. fonts without usable glyph metrics).
    """
    span_rect = fitz.Rect(span["bbox"])
    hits = page.search_for(tag, clip=span_rect + (-1, -1, 1, 1))
    if occurrence < len(hits):
        return hits[occurrence]
    return span_rect


def scan_page(page: fitz.Page) -> list[TagPosition]:
    positions: list[TagPosition] = []
    text_dict = page.get_text("dict", flags=fitz.TEXT_PRESERVE_WHITESPACE)

    for block in text_dict.get("blocks", []):
        if block.get("type") != 0:
            continue
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                seen: dict[str, int] = {}
                for match in PLACEHOLDER_RE.finditer(span["text"]):
                    tag = match.group(0)
                    # search_for is case-insensitive, so count per folded tag
                    occurrence = seen.get(tag.casefold(), 0)
                    seen[tag.casefold()] = occurrence + 1

                    rect = _tag_rect(page, tag, span, occurrence)
                    positions.append(
                        TagPosition(
                            page=page.number,
                            key=match.group(1),
                            text=tag,
                            rect=(rect.x0, rect.y0, rect.x1, rect.y1),
                            origin=(rect.x0, span["origin"][1]),
                            font_size=span["size"],
                            color=_span_color(span),
                            bold=bool(span.get("flags", 0) & _BOLD_FLAG),
                        )
                    )
    return positions


def scan_tags(doc: fitz.Document) -> list[TagPosition]:
    """Tag positions across all pages, in reading order."""
    positions: list[TagPosition] = []
    for page in doc:
        positions.extend(scan_page(page))
    return positions


def extract_pdf_placeholders(content: bytes) -> list[str]:
    """Unique tag names found in a PDF, in order of first appearance."""
    with fitz.open(stream=content, filetype="pdf") as doc:
        if doc.page_count == 0:
            raise ValueError("PDF has no pages")
        return list(dict.fromkeys(p.key for p in scan_tags(doc)))


def replacement_for(position: TagPosition, values: Mapping[str, str]) -> str | None:
    """Text to draw over ``position``, or None when nothing should be painted.

    Nothing is painted when the tag has no value (resolution leaves it
    unchanged) or when the value is empty.
    """
    if position.is_qr:
        return None
    replacement = resolve(position.text, values)
    if not replacement or replacement == position.text:
        return None
    return replacement
