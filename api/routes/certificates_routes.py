"""Certificate generation and download endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Request
from fastapi.responses import FileResponse

from core.auth import AdminUser
from core.database import DbSession, SessionMaker
from core.logger import get_logger
from core.ratelimit import DOWNLOAD_LIMIT, GENERATE_LIMIT, limiter
from core.storage import Storage
from rendering.assembler import DocumentAssembler, RenderError
from schemas import (
    BulkGenerateRequest,
    BulkGenerateResponse,
    BulkItemError,
    BulkItemResult,
    CertificateResponse,
    GenerateRequest,
    GenerateResponse,
)
from services.certificates_service import (
    deliver_certificate,
    generate_bulk,
    generate_certificate,
    get_download_path,
)
from services.mail_service import MailService
from services.recipients_service import RecipientNotAllowedError
from services.templates_service import TemplateNotFoundError, TemplateValidationError
from services.verification_service import CertificateNotFoundError

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["certificates"])


def get_assembler(request: Request) -> DocumentAssembler:
    return request.app.state.assembler


def get_mailer(request: Request) -> MailService:
    return request.app.state.mailer


Assembler = Annotated[DocumentAssembler, Depends(get_assembler)]
Mailer = Annotated[MailService, Depends(get_mailer)]


@router.post(
    "/generate",
    response_model=GenerateResponse,
    responses={
        403: {"description": "Recipient not in allowed list"},
        404: {"description": "Template not found"},
        500: {"description": "Document rendering failed"},
    },
)
@limiter.limit(GENERATE_LIMIT)
async def generate_endpoint(
    request: Request,
    body: GenerateRequest,
    admin: AdminUser,
    db: DbSession,
    assembler: Assembler,
    storage: Storage,
    mailer: Mailer,
) -> GenerateResponse:
    """Generate one certificate for an allow-listed recipient.

    Mail is only sent once the record is committed.
    """
    try:
        certificate = await generate_certificate(db, assembler, storage, body)
    except RecipientNotAllowedError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except TemplateNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except TemplateValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RenderError:
        raise HTTPException(status_code=500, detail="Failed to generate certificate")

    await db.commit()
    if body.send_email:
        await deliver_certificate(mailer, storage, certificate)

    response = CertificateResponse.model_validate(certificate)
    return GenerateResponse(certificate=response, file_url=response.file_url)


@router.post("/generate/bulk", response_model=BulkGenerateResponse)
@limiter.limit(GENERATE_LIMIT)
async def generate_bulk_endpoint(
    request: Request,
    body: BulkGenerateRequest,
    admin: AdminUser,
    session_maker: SessionMaker,
    assembler: Assembler,
    storage: Storage,
    mailer: Mailer,
) -> BulkGenerateResponse:
    """Generate certificates for many recipients.

    Always returns 200; per-recipient failures are listed in ``errors``.
    """
    outcome = await generate_bulk(
        session_maker, assembler, storage, body, mailer=mailer
    )
    return BulkGenerateResponse(
        results=[
            BulkItemResult(
                index=item.index,
                name=item.name,
                email=item.email,
                certificate=CertificateResponse.model_validate(item.certificate),
            )
            for item in outcome.results
        ],
        errors=[
            BulkItemError(
                index=failure.index,
                name=failure.name,
                email=failure.email,
                error=failure.error,
            )
            for failure in outcome.errors
        ],
    )


@router.get(
    "/certificates/{verification_code}/download",
    response_class=FileResponse,
    responses={404: {"description": "Certificate not found"}},
)
@limiter.limit(DOWNLOAD_LIMIT)
async def download_endpoint(
    request: Request,
    db: DbSession,
    storage: Storage,
    verification_code: str = Path(max_length=64),
) -> FileResponse:
    """Download the issued PDF for a verification code."""
    try:
        certificate, path = await get_download_path(db, storage, verification_code)
    except CertificateNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return FileResponse(
        path,
        media_type="application/pdf",
        filename=f"certificate-{certificate.verification_code}.pdf",
    )
