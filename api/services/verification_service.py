"""Public certificate verification.

A certificate is Unverified until the first successful lookup of its code,
which stamps ``verified_at`` and flips ``is_verified``. That transition happens
once; later lookups return the stored state unchanged.

Only a redacted view leaves this module: recipient name and email, issue and
verification timestamps, and the document location.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from models import Certificate
from repositories.certificate_repository import CertificateRepository

logger = logging.getLogger(__name__)


class InvalidVerificationCodeError(Exception):
    """Raised for codes that cannot possibly be valid."""

    def __init__(self, message: str = "Invalid verification code"):
        super().__init__(message)


class CertificateNotFoundError(Exception):
    """Raised when no certificate matches the lookup."""

    def __init__(self, message: str = "Certificate not found"):
        super().__init__(message)


@dataclass(frozen=True)
class VerifiedCertificate:
    """Redacted public view of a certificate."""

    recipient_name: str
    recipient_email: str
    issued_at: datetime
    verified_at: datetime | None
    file_url: str


def _public_view(certificate: Certificate) -> VerifiedCertificate:
    return VerifiedCertificate(
        recipient_name=certificate.recipient_name,
        recipient_email=certificate.recipient_email,
        issued_at=certificate.issued_at,
        verified_at=certificate.verified_at,
        file_url=certificate.file_url,
    )


def _check_code(code: str) -> str:
    code = code.strip()
    if len(code) < get_settings().min_code_length:
        raise InvalidVerificationCodeError()
    return code


def _names_match(stored: str, given: str) -> bool:
    return stored.strip().casefold() == given.strip().casefold()


async def _verify(db: AsyncSession, code: str, name: str | None) -> VerifiedCertificate:
    code = _check_code(code)
    repo = CertificateRepository(db)

    certificate = await repo.get_by_verification_code(code)
    if certificate is None:
        raise CertificateNotFoundError()

    # Unknown name and wrong name are indistinguishable to the caller
    if name is not None and not _names_match(certificate.recipient_name, name):
        raise CertificateNotFoundError()

    if not certificate.is_verified:
        certificate = await repo.mark_verified(certificate)
        logger.info(
            "verification.first",
            extra={"verification_code": code, "certificate_id": certificate.id},
        )
    else:
        logger.info("verification.repeat", extra={"verification_code": code})

    return _public_view(certificate)


async def verify_by_code(db: AsyncSession, code: str) -> VerifiedCertificate:
    """Look up a certificate by code and record the first verification.

    Raises:
        InvalidVerificationCodeError: If the code is shorter than the minimum.
        CertificateNotFoundError: If no certificate has this code.
    """
    return await _verify(db, code, None)


async def verify_by_code_and_name(
    db: AsyncSession, code: str, name: str
) -> VerifiedCertificate:
    """Like ``verify_by_code`` but the recipient name must match as well.

    Names are compared after trimming, ignoring case.
    """
    return await _verify(db, code, name)
