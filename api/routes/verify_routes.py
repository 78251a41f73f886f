"""Public certificate verification endpoint.

Error responses keep the ``{valid, error}`` shape the verification page
expects instead of FastAPI's ``{detail}``.
"""

from fastapi import APIRouter, Path, Query, Request
from fastapi.responses import JSONResponse

from core.database import DbSession
from core.ratelimit import VERIFY_LIMIT, limiter
from schemas import PublicCertificateView, VerifyResponse
from services.verification_service import (
    CertificateNotFoundError,
    InvalidVerificationCodeError,
    verify_by_code,
    verify_by_code_and_name,
)

router = APIRouter(prefix="/api/verify", tags=["verification"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=VerifyResponse(valid=False, error=message).model_dump(
            exclude_none=True
        ),
    )


@router.get(
    "/{verification_code}",
    response_model=VerifyResponse,
    response_model_exclude_none=True,
    responses={
        400: {"description": "Malformed verification code"},
        404: {"description": "Certificate not found"},
    },
)
@limiter.limit(VERIFY_LIMIT)
async def verify_endpoint(
    request: Request,
    db: DbSession,
    verification_code: str = Path(max_length=64),
    name: str | None = Query(default=None, max_length=255),
):
    """Verify a certificate. The first successful lookup marks it verified."""
    try:
        if name is None:
            view = await verify_by_code(db, verification_code)
        else:
            view = await verify_by_code_and_name(db, verification_code, name)
    except InvalidVerificationCodeError as e:
        return _error(400, str(e))
    except CertificateNotFoundError as e:
        return _error(404, str(e))

    return VerifyResponse(
        valid=True,
        certificate=PublicCertificateView.model_validate(view),
    )
