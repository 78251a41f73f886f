"""Certificate generation business logic.

This module handles:
- The allow-list gate and template lookup (both before any rendering)
- Verification code assignment (two-phase: temporary id, then final code)
- QR image and document rendering (delegating to the rendering module)
- Optional delivery by email, once the record is committed
- Bulk generation, one transaction per recipient
- Locating the stored document for download

Routes should delegate all certificate business logic to this module.

Code assignment runs inside the caller's transaction: the row is inserted
with a temporary unique code, the final code is derived from the row identity,
and the row is updated. The transaction is only committed after the document
has been written, so a failed render never leaves a committed record (or a
temporary code) behind.
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import get_settings
from core.storage import CERTIFICATES_DIR, QR_DIR, FileStorage
from models import Certificate
from rendering.assembler import DocumentAssembler, RenderError
from rendering.placeholders import build_replacements
from rendering.qr import (
    format_verification_code,
    new_verification_id,
    render_qr,
    verification_url,
)
from repositories.certificate_repository import CertificateRepository
from schemas import BulkGenerateRequest, GenerateRequest
from services.mail_service import MailService
from services.recipients_service import RecipientNotAllowedError, require_allowed
from services.templates_service import (
    TemplateNotFoundError,
    TemplateValidationError,
    get_template,
    template_source,
)
from services.verification_service import CertificateNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BulkItem:
    index: int
    name: str
    email: str
    certificate: Certificate


@dataclass(frozen=True)
class BulkFailure:
    index: int
    name: str | None
    email: str | None
    error: str


@dataclass
class BulkOutcome:
    results: list[BulkItem] = field(default_factory=list)
    errors: list[BulkFailure] = field(default_factory=list)


def _stringify_metadata(metadata: Mapping[str, Any]) -> dict[str, str]:
    return {key: "" if value is None else str(value) for key, value in metadata.items()}


async def generate_certificate(
    db: AsyncSession,
    assembler: DocumentAssembler,
    storage: FileStorage,
    request: GenerateRequest,
) -> Certificate:
    """Generate, render and record one certificate.

    Flushes but does NOT commit; the caller commits once this returns and only
    then calls ``deliver_certificate`` when ``request.send_email`` is set.

    Raises:
        RecipientNotAllowedError: If the email is not on the allow-list.
        TemplateNotFoundError: If the template does not exist.
        RenderError: If the document could not be rendered.
    """
    recipient = await require_allowed(db, request.email)
    template = await get_template(db, request.template_id)
    source = template_source(template, storage)

    settings = get_settings()
    event = request.event or recipient.event
    metadata = _stringify_metadata(request.metadata)

    pdf_key = storage.new_key(CERTIFICATES_DIR, ".pdf")
    qr_key = storage.new_key(QR_DIR, ".png")

    repo = CertificateRepository(db)
    certificate = await repo.create(
        verification_code=new_verification_id(),
        recipient_name=request.name,
        recipient_email=request.email,
        template_id=template.id,
        event=event,
        file_path=pdf_key,
        file_url=storage.public_url(pdf_key),
        qr_code_url=storage.public_url(qr_key),
        metadata=metadata,
    )
    if settings.sequential_codes:
        await repo.finalize_code(certificate, format_verification_code(certificate.id))
    code = certificate.verification_code

    qr_png = await asyncio.to_thread(render_qr, verification_url(code))
    storage.write_bytes(qr_key, qr_png)

    values = build_replacements(
        name=request.name,
        email=request.email,
        verification_code=code,
        event=event,
        metadata=metadata,
    )
    try:
        await assembler.assemble(
            source, values, qr_png, storage.path_for(pdf_key)
        )
    except RenderError:
        storage.delete(qr_key)
        raise

    logger.info(
        "certificate.generated",
        extra={
            "certificate_id": certificate.id,
            "verification_code": code,
            "template_id": template.id,
            "template_kind": template.kind.value,
        },
    )

    return certificate


async def deliver_certificate(
    mailer: MailService, storage: FileStorage, certificate: Certificate
) -> bool:
    """Email a committed certificate to its recipient.

    Never call this before the commit: the message carries a verification link
    that must already resolve.
    """
    return await mailer.send_certificate(
        certificate.recipient_name,
        certificate.recipient_email,
        storage.path_for(certificate.file_path),
        certificate.verification_code,
    )


def _item_label(raw: Any) -> tuple[str | None, str | None]:
    if not isinstance(raw, Mapping):
        return None, None
    name, email = raw.get("name"), raw.get("email")
    return (
        name if isinstance(name, str) else None,
        email if isinstance(email, str) else None,
    )


def _validation_message(e: ValidationError) -> str:
    first = e.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first['msg']}" if location else first["msg"]


async def generate_bulk(
    session_maker: async_sessionmaker[AsyncSession],
    assembler: DocumentAssembler,
    storage: FileStorage,
    request: BulkGenerateRequest,
    *,
    mailer: MailService | None = None,
) -> BulkOutcome:
    """Generate a certificate for every recipient, in order.

    Each recipient gets its own session and transaction. A failure is
    recorded against that recipient's index and the loop moves on; nothing
    is persisted for a failed recipient. Mail goes out after each commit.
    """
    outcome = BulkOutcome()

    for index, raw in enumerate(request.recipients):
        name, email = _item_label(raw)
        try:
            item = GenerateRequest.model_validate(
                {
                    **raw,
                    "template_id": request.template_id,
                    "send_email": request.send_email,
                }
            )
            async with session_maker() as db:
                try:
                    certificate = await generate_certificate(
                        db, assembler, storage, item
                    )
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
        except ValidationError as e:
            outcome.errors.append(
                BulkFailure(index, name, email, _validation_message(e))
            )
            continue
        except (
            RecipientNotAllowedError,
            TemplateNotFoundError,
            TemplateValidationError,
            RenderError,
        ) as e:
            outcome.errors.append(BulkFailure(index, name, email, str(e)))
            continue
        except Exception:
            logger.exception("certificate.bulk.item_failed", extra={"index": index})
            outcome.errors.append(
                BulkFailure(index, name, email, "Internal server error")
            )
            continue

        outcome.results.append(BulkItem(index, item.name, item.email, certificate))
        if item.send_email:
            mailer = mailer or MailService(get_settings())
            await deliver_certificate(mailer, storage, certificate)

    logger.info(
        "certificate.bulk.complete",
        extra={
            "template_id": request.template_id,
            "generated": len(outcome.results),
            "failed": len(outcome.errors),
        },
    )
    return outcome


async def get_download_path(
    db: AsyncSession, storage: FileStorage, verification_code: str
) -> tuple[Certificate, Path]:
    """Stored document for a verification code.

    Raises:
        CertificateNotFoundError: If the code is unknown or the file is gone.
    """
    certificate = await CertificateRepository(db).get_by_verification_code(
        verification_code.strip()
    )
    if certificate is None:
        raise CertificateNotFoundError()

    path = storage.path_for(certificate.file_path)
    if not path.is_file():
        logger.warning(
            "certificate.file_missing",
            extra={"verification_code": certificate.verification_code},
        )
        raise CertificateNotFoundError("Certificate file not found")
    return certificate, path
