"""Rendering module for document concerns.

This module handles everything between a template and a finished PDF:
- Placeholder discovery and resolution
- QR code issuing
- Document assembly (SVG, HTML and PDF templates)
- The shared rendering engine lifecycle

Nothing in here touches the database; services pass in plain values.
"""

from rendering.assembler import DocumentAssembler, RenderError, TemplateSource
from rendering.engine import RenderEngine
from rendering.placeholders import (
    build_replacements,
    embed_qr,
    extract_placeholders,
    resolve,
)
from rendering.qr import (
    format_verification_code,
    new_verification_id,
    render_qr,
    verification_url,
)

__all__ = [
    "DocumentAssembler",
    "RenderEngine",
    "RenderError",
    "TemplateSource",
    "build_replacements",
    "embed_qr",
    "extract_placeholders",
    "format_verification_code",
    "new_verification_id",
    "render_qr",
    "resolve",
    "verification_url",
]
