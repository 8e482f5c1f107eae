"""Pickup schedule endpoints: /api/v1/schedules/*."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from wastewatch.auth.dependencies import get_current_user, require_staff
from wastewatch.database import get_session
from wastewatch.db.models import PickupSchedule, Profile
from wastewatch.notifications.push import publish_table_event
from wastewatch.redis_client import get_redis
from wastewatch.schedules.schemas import ScheduleCreateRequest, ScheduleListResponse, ScheduleResponse
from wastewatch.schedules.service import (
    ScheduleNotFoundError,
    create_schedule,
    delete_schedule,
    get_schedule,
    list_upcoming,
    transition_schedule,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/schedules", tags=["Schedules"])


def _response(schedule: PickupSchedule) -> ScheduleResponse:
    return ScheduleResponse.model_validate(schedule)


def _schedule_error(e: Exception) -> HTTPException:
    if isinstance(e, ScheduleNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, PermissionError):
        return HTTPException(status_code=403, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


@router.post("", response_model=ScheduleResponse, status_code=201)
async def add_schedule(
    body: ScheduleCreateRequest,
    user: Profile = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> ScheduleResponse:
    try:
        schedule = await create_schedule(db, user, area=body.area, pickup_date=body.pickup_date, notes=body.notes)
    except (ValueError, PermissionError) as e:
        raise _schedule_error(e) from e
    await db.commit()
    response = _response(schedule)
    logger.info("schedule_created", schedule_id=response.id, area=response.area)
    await publish_table_event(redis, "pickup_schedules", "INSERT", response.id)
    return response


@router.get("", response_model=ScheduleListResponse)
async def upcoming_schedules(
    area: str | None = Query(None, max_length=128),
    include_closed: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ScheduleListResponse:
    """Pickups from today onwards, soonest first."""
    schedules = await list_upcoming(db, area=area, include_closed=include_closed, limit=limit)
    return ScheduleListResponse(schedules=[_response(s) for s in schedules], total=len(schedules))


@router.get("/{schedule_id}", response_model=ScheduleResponse)
async def get_one_schedule(
    schedule_id: str,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ScheduleResponse:
    try:
        return _response(await get_schedule(db, schedule_id))
    except ValueError as e:
        raise _schedule_error(e) from e


async def _transition(db: AsyncSession, redis: Redis, user: Profile, schedule_id: str, target: str) -> ScheduleResponse:
    try:
        schedule = await transition_schedule(db, user, schedule_id, target)
    except (ValueError, PermissionError) as e:
        raise _schedule_error(e) from e
    await db.commit()
    response = _response(schedule)
    logger.info("schedule_status_changed", schedule_id=schedule_id, status=target)
    await publish_table_event(redis, "pickup_schedules", "UPDATE", schedule_id)
    return response


@router.post("/{schedule_id}/complete", response_model=ScheduleResponse)
async def complete_schedule(
    schedule_id: str,
    user: Profile = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> ScheduleResponse:
    return await _transition(db, redis, user, schedule_id, "completed")


@router.post("/{schedule_id}/cancel", response_model=ScheduleResponse)
async def cancel_schedule(
    schedule_id: str,
    user: Profile = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> ScheduleResponse:
    return await _transition(db, redis, user, schedule_id, "canceled")


@router.delete("/{schedule_id}")
async def remove_schedule(
    schedule_id: str,
    user: Profile = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> dict[str, str]:
    try:
        await delete_schedule(db, user, schedule_id)
    except (ValueError, PermissionError) as e:
        raise _schedule_error(e) from e
    await db.commit()
    logger.info("schedule_deleted", schedule_id=schedule_id, user_id=user.id)
    await publish_table_event(redis, "pickup_schedules", "DELETE", schedule_id)
    return {"detail": "Schedule deleted"}
