"""Dashboard counters."""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from repositories.certificate_repository import CertificateRepository
from repositories.template_repository import TemplateRepository


@dataclass(frozen=True)
class DashboardStats:
    templates: int
    certificates: int
    verified: int


async def get_stats(db: AsyncSession) -> DashboardStats:
    cert_repo = CertificateRepository(db)
    return DashboardStats(
        templates=await TemplateRepository(db).count(),
        certificates=await cert_repo.count(),
        verified=await cert_repo.count_verified(),
    )
