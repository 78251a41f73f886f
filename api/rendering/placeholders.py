"""Placeholder resolution for certificate templates.

Templates carry tags of the form ``{{NAME}}``. Everything between the double
braces is the tag name, matched case-insensitively against a replacement
mapping. Tags without a matching key are left exactly as written.

Replacement mappings are prepared by ``build_replacements``: every logical
field is registered under both its upper-cased and its as-given key, so
``{{NAME}}``, ``{{name}}`` and ``{{Name}}`` all resolve to the same value.

The reserved ``{{QR}}`` tag is never resolved to text; ``embed_qr`` swaps it for
an image element pointing at the rendered QR code.
"""

import re
from collections.abc import Mapping
from typing import Any

from models import TemplateKind

PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")
QR_TAG_RE = re.compile(r"\{\{QR\}\}", re.IGNORECASE)

QR_KEY = "QR"

# Fixed placement of the QR image in vector templates (user units / CSS px)
QR_X = 850
QR_Y = 600
QR_SIZE = 200

_SVG_END = "</svg>"
_HTML_END = "</body>"


def _register(replacements: dict[str, str], key: str, value: str) -> None:
    replacements[key.upper()] = value
    replacements[key] = value


def build_replacements(
    *,
    name: str,
    email: str,
    verification_code: str,
    event: str | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> dict[str, str]:
    """Build the replacement mapping for one recipient.

    Metadata entries are stringified and win over the built-in fields when
    they share a key. ``QR`` is reserved and never taken from metadata.
    """
    replacements: dict[str, str] = {}
    _register(replacements, "name", name)
    _register(replacements, "event", event or "")
    _register(replacements, "id", verification_code)
    _register(replacements, "email", email)

    for key, value in (metadata or {}).items():
        if key.upper() == QR_KEY:
            continue
        _register(replacements, key, "" if value is None else str(value))

    return replacements


def _lookup(values: Mapping[str, str], folded: Mapping[str, str], tag: str) -> str | None:
    if tag in values:
        return values[tag]
    upper = tag.upper()
    if upper in values:
        return values[upper]
    return folded.get(tag.casefold())


def resolve(body: str, values: Mapping[str, str]) -> str:
    """Replace every ``{{key}}`` that has a value; leave the rest untouched.

    Substitution is a single pass, so text inserted from ``values`` is never
    scanned again.
    """
    folded: dict[str, str] = {}
    for key, value in values.items():
        folded.setdefault(key.casefold(), value)

    def _substitute(match: re.Match[str]) -> str:
        value = _lookup(values, folded, match.group(1))
        return match.group(0) if value is None else value

    return PLACEHOLDER_RE.sub(_substitute, body)


def extract_placeholders(body: str) -> list[str]:
    """Unique tag names in order of first appearance."""
    return list(dict.fromkeys(m.group(1) for m in PLACEHOLDER_RE.finditer(body)))


def has_qr_tag(body: str) -> bool:
    return QR_TAG_RE.search(body) is not None


def qr_image_tag(kind: TemplateKind, image_ref: str) -> str:
    if kind is TemplateKind.HTML:
        return f'<img src="{image_ref}" width="{QR_SIZE}" height="{QR_SIZE}" />'
    return (
        f'<image x="{QR_X}" y="{QR_Y}" width="{QR_SIZE}" height="{QR_SIZE}" '
        f'href="{image_ref}" />'
    )


def embed_qr(markup: str, kind: TemplateKind, image_ref: str) -> str:
    """Put the QR image where ``{{QR}}`` is, or before the closing tag.

    Without a ``{{QR}}`` tag the image goes right before the last ``</svg>``
    (or ``</body>`` for HTML). Markup without either marker gets the image
    appended at the end.
    """
    tag = qr_image_tag(kind, image_ref)

    if has_qr_tag(markup):
        return QR_TAG_RE.sub(lambda _: tag, markup)

    marker = _HTML_END if kind is TemplateKind.HTML else _SVG_END
    index = markup.lower().rfind(marker)
    if index == -1:
        return markup + tag
    return markup[:index] + tag + markup[index:]
