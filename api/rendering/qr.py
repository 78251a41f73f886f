"""QR token issuing: verification identifiers, codes, URLs and QR images."""

import uuid
from io import BytesIO

import qrcode
from qrcode.constants import ERROR_CORRECT_H

from core.config import get_settings

QR_WIDTH_PX = 300


def new_verification_id() -> str:
    """A collision-resistant temporary identifier.

    Uniqueness is enforced by the certificates table, not checked here.
    """
    return uuid.uuid4().hex


def format_verification_code(
    identity: int, *, prefix: str | None = None, width: int | None = None
) -> str:
    """Human-facing code derived from a row identity, e.g. CERT-000042."""
    settings = get_settings()
    prefix = settings.verification_code_prefix if prefix is None else prefix
    width = settings.verification_code_width if width is None else width
    return f"{prefix}-{identity:0{width}d}"


def verification_url(code: str) -> str:
    base = get_settings().frontend_url.rstrip("/")
    return f"{base}/verify/{code}"


def render_qr(data: str, *, size_pixels: int = QR_WIDTH_PX) -> bytes:
    """Encode ``data`` as a square PNG with high error correction."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECT_H,
        box_size=10,
        border=1,
    )
    qr.add_data(data)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    img = img.resize((size_pixels, size_pixels))

    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
