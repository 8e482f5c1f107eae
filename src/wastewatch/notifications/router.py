"""Notification endpoints: list, badge summary, read receipts, staff broadcast."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from wastewatch.auth.dependencies import get_current_user, require_staff
from wastewatch.auth.service import get_profile_by_id
from wastewatch.config import get_settings
from wastewatch.database import get_session
from wastewatch.db.models import Notification, Profile
from wastewatch.notifications.push import push_notification
from wastewatch.notifications.reminders import ensure_collection_reminder
from wastewatch.notifications.schemas import (
    NotificationCreateRequest,
    NotificationListResponse,
    NotificationResponse,
    NotificationSummaryResponse,
    UnreadCountResponse,
)
from wastewatch.notifications.service import (
    create_notification,
    get_unread_count,
    has_collection_today,
    list_notifications,
    mark_all_as_read,
    mark_as_read,
)
from wastewatch.redis_client import get_redis

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


def _response(notification: Notification, read: bool) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        title=notification.title,
        message=notification.message,
        type=notification.type,  # type: ignore[arg-type]
        for_user_id=notification.for_user_id,
        for_all=notification.for_all,
        recipient_role=notification.recipient_role,
        created_by=notification.created_by,
        read=read,
        created_at=notification.created_at,
        metadata=notification.notification_metadata or {},
    )


@router.get("", response_model=NotificationListResponse)
async def list_my_notifications(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> NotificationListResponse:
    rows, total = await list_notifications(db, user, page, per_page, unread_only=unread_only)
    return NotificationListResponse(
        notifications=[_response(n, read) for n, read in rows],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/summary", response_model=NotificationSummaryResponse)
async def notification_summary(
    local_read_ids: list[str] = Query(default_factory=list),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> NotificationSummaryResponse:
    """Unread badge, today's-collection flag, and lazy reminder creation."""
    await ensure_collection_reminder(db, redis, user)
    unread = await get_unread_count(db, user, local_read_ids)
    return NotificationSummaryResponse(
        unread_count=unread,
        has_new_notifications=unread > 0,
        has_collection_today=await has_collection_today(db, user.area),
        refresh_interval_seconds=get_settings().notification_refresh_interval_seconds,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    local_read_ids: list[str] = Query(default_factory=list),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> UnreadCountResponse:
    return UnreadCountResponse(unread_count=await get_unread_count(db, user, local_read_ids))


@router.post("/read-all")
async def read_all(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, object]:
    count = await mark_all_as_read(db, user)
    await db.commit()
    return {"detail": f"Marked {count} notifications as read", "count": count}


@router.post("/{notification_id}/read")
async def read_one(
    notification_id: str,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    if not await mark_as_read(db, user, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    await db.commit()
    return {"detail": "Notification marked as read"}


@router.post("", response_model=NotificationResponse, status_code=201)
async def send_notification(
    body: NotificationCreateRequest,
    user: Profile = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> NotificationResponse:
    """Staff-authored notification to one profile, a role, or everyone."""
    if body.for_user_id and await get_profile_by_id(db, body.for_user_id) is None:
        raise HTTPException(status_code=404, detail="Recipient not found")
    try:
        notification = await create_notification(
            db,
            title=body.title,
            message=body.message,
            type_=body.type,
            for_user_id=body.for_user_id,
            for_all=body.for_all,
            recipient_role=body.recipient_role,
            created_by=user.id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    await db.commit()
    await push_notification(redis, notification)
    return _response(notification, read=False)
