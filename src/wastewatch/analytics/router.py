"""Analytics endpoints (officials and admins)."""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from wastewatch.analytics.service import get_report_analytics
from wastewatch.auth.dependencies import require_staff
from wastewatch.database import get_session
from wastewatch.db.models import Profile
from wastewatch.redis_client import get_redis

router = APIRouter(prefix="/api/v1/analytics", tags=["Analytics"])


@router.get("/reports")
async def report_analytics(
    range_: Literal["week", "month", "year", "all"] = Query("month", alias="range"),
    user: Profile = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> dict[str, Any]:
    """Status totals, top areas and trend for reports created in the range."""
    return await get_report_analytics(db, redis, range_)
