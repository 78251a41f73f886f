"""Repository for certificate operations."""

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import Certificate
from repositories.utils import log_slow_query


class CertificateRepository:
    """Repository for certificate CRUD operations.

    Certificates are created once and afterwards only mutated by
    ``finalize_code`` (during creation) and ``mark_verified``.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_by_id(self, certificate_id: int) -> Certificate | None:
        return await self.db.get(Certificate, certificate_id)

    @log_slow_query("certificate_get_by_code")
    async def get_by_verification_code(
        self,
        verification_code: str,
    ) -> Certificate | None:
        """Get a certificate by its verification code (for public verification)."""
        result = await self.db.execute(
            select(Certificate).where(
                Certificate.verification_code == verification_code
            )
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        *,
        verification_code: str,
        recipient_name: str,
        recipient_email: str,
        template_id: int,
        file_path: str,
        file_url: str,
        event: str | None = None,
        qr_code_url: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> Certificate:
        """Create a new certificate.

        Sets issued_at to current UTC time. Calls flush() but does NOT commit;
        the caller is responsible for transaction management.
        """
        certificate = Certificate(
            verification_code=verification_code,
            recipient_name=recipient_name,
            recipient_email=recipient_email,
            template_id=template_id,
            event=event,
            file_path=file_path,
            file_url=file_url,
            qr_code_url=qr_code_url,
            metadata_=dict(metadata or {}),
            issued_at=datetime.now(UTC),
            is_verified=False,
        )
        self.db.add(certificate)
        await self.db.flush()
        return certificate

    async def finalize_code(self, certificate: Certificate, code: str) -> Certificate:
        """Replace the temporary verification code with its final value.

        Second half of the two-phase insert; runs in the same transaction as
        ``create``. Does NOT commit.
        """
        certificate.verification_code = code
        await self.db.flush()
        return certificate

    @log_slow_query("certificate_mark_verified")
    async def mark_verified(self, certificate: Certificate) -> Certificate:
        """Flip ``is_verified`` and stamp ``verified_at`` exactly once.

        The update only matches rows that are still unverified, so concurrent
        first lookups cannot overwrite each other's timestamp. The returned row
        always reflects the stored state. Does NOT commit.
        """
        await self.db.execute(
            update(Certificate)
            .where(
                Certificate.id == certificate.id,
                Certificate.is_verified.is_(False),
            )
            .values(is_verified=True, verified_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(certificate)
        return certificate

    async def exists_for_template(self, template_id: int) -> bool:
        """Whether any certificate references the template."""
        result = await self.db.execute(
            select(Certificate.id).where(Certificate.template_id == template_id).limit(1)
        )
        return result.first() is not None

    async def count(self) -> int:
        result = await self.db.execute(select(func.count(Certificate.id)))
        return result.scalar_one()

    async def count_verified(self) -> int:
        result = await self.db.execute(
            select(func.count(Certificate.id)).where(Certificate.is_verified.is_(True))
        )
        return result.scalar_one()

    async def list_recent(self, *, limit: int = 50) -> Sequence[Certificate]:
        """Most recently issued certificates first."""
        result = await self.db.execute(
            select(Certificate)
            .order_by(Certificate.issued_at.desc(), Certificate.id.desc())
            .limit(limit)
        )
        return result.scalars().all()
