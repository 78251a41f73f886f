"""Dashboard statistics endpoint (admin only)."""

from fastapi import APIRouter

from core.auth import AdminUser
from core.database import DbSession
from schemas import StatsResponse
from services.stats_service import get_stats

router = APIRouter(prefix="/api/stats", tags=["stats"])


@router.get("", response_model=StatsResponse)
async def stats_endpoint(admin: AdminUser, db: DbSession) -> StatsResponse:
    stats = await get_stats(db)
    return StatsResponse(
        templates=stats.templates,
        certificates=stats.certificates,
        verified=stats.verified,
    )
