"""Collection reminders for upcoming pickups.

A reminder is created at most once per (schedule, profile). The guard is a
Redis ``SET NX`` sentinel, so concurrent tabs, API replicas and the worker
cron cannot produce duplicates. If creating the notification fails the
sentinel is released so a later pass can try again.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select

from wastewatch.db.models import PickupSchedule, Profile
from wastewatch.notifications.service import notify_safely
from wastewatch.timeutils import as_utc, portal_tz, upcoming_window, utcnow

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from sqlalchemy.ext.asyncio import AsyncSession

    from wastewatch.db.models import Notification

logger = logging.getLogger(__name__)

SENTINEL_PREFIX = "reminder:collection"


def sentinel_key(schedule_id: str, user_id: str) -> str:
    return f"{SENTINEL_PREFIX}:{schedule_id}:{user_id}"


def format_pickup_time(pickup_date: datetime) -> str:
    """Portal-local, e.g. ``Monday, Mar 02, 09:00 AM``."""
    return as_utc(pickup_date).astimezone(portal_tz()).strftime("%A, %b %d, %I:%M %p")


def reminder_message(area: str, pickup_date: datetime) -> str:
    return (
        f"A waste collection is scheduled for your area ({area}) on {format_pickup_time(pickup_date)}. "
        "Please ensure your waste is properly sorted and ready for collection."
    )


async def find_upcoming_schedule(
    db: AsyncSession,
    area: str,
    now: datetime | None = None,
) -> PickupSchedule | None:
    """Earliest scheduled pickup for ``area`` inside the reminder window."""
    start, end = upcoming_window(now)
    result = await db.execute(
        select(PickupSchedule)
        .where(
            PickupSchedule.area == area,
            PickupSchedule.status == "scheduled",
            PickupSchedule.pickup_date >= start,
            PickupSchedule.pickup_date < end,
        )
        .order_by(PickupSchedule.pickup_date.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def claim_sentinel(redis: Redis, schedule: PickupSchedule, user_id: str, now: datetime | None = None) -> bool:
    """Atomically claim the reminder slot; False if someone already has."""
    now = as_utc(now or utcnow())
    # Keep the key until a day after the pickup so late passes still see it
    ttl = as_utc(schedule.pickup_date) + timedelta(days=1) - now
    seconds = max(int(ttl.total_seconds()), 3600)
    return bool(await redis.set(sentinel_key(schedule.id, user_id), "1", nx=True, ex=seconds))


async def remind_profile(
    redis: Redis,
    profile: Profile,
    schedule: PickupSchedule,
    now: datetime | None = None,
) -> Notification | None:
    """Create the reminder for one profile unless it already exists."""
    if not await claim_sentinel(redis, schedule, profile.id, now):
        return None

    notification = await notify_safely(
        redis,
        related_table="pickup_schedules",
        related_operation="collection_reminder",
        title="Upcoming Waste Collection",
        message=reminder_message(schedule.area, schedule.pickup_date),
        type_="collection",
        for_user_id=profile.id,
        metadata={"schedule_id": schedule.id, "pickup_date": as_utc(schedule.pickup_date).isoformat()},
    )
    if notification is None:
        await redis.delete(sentinel_key(schedule.id, profile.id))
    return notification


async def ensure_collection_reminder(
    db: AsyncSession,
    redis: Redis,
    profile: Profile,
    now: datetime | None = None,
) -> Notification | None:
    """
    Lazily create the viewer's reminder for their area's next pickup.

    Returns the new notification, or None when there is nothing to remind
    about or a reminder already exists. Errors degrade to None.
    """
    if not profile.area:
        return None
    try:
        schedule = await find_upcoming_schedule(db, profile.area, now)
        if schedule is None:
            return None
        return await remind_profile(redis, profile, schedule, now)
    except Exception:
        logger.warning("Collection reminder check failed for %s", profile.id, exc_info=True)
        return None


async def send_area_reminders(db: AsyncSession, redis: Redis, now: datetime | None = None) -> list[Notification]:
    """Remind every active profile in each area with a pickup inside the window."""
    start, end = upcoming_window(now)
    schedules = await db.execute(
        select(PickupSchedule)
        .where(
            PickupSchedule.status == "scheduled",
            PickupSchedule.pickup_date >= start,
            PickupSchedule.pickup_date < end,
        )
        .order_by(PickupSchedule.pickup_date.asc())
    )

    created: list[Notification] = []
    seen_areas: set[str] = set()
    for schedule in schedules.scalars().all():
        # Only the earliest pickup per area, matching the per-viewer check
        if schedule.area in seen_areas:
            continue
        seen_areas.add(schedule.area)

        profiles = await db.execute(
            select(Profile).where(Profile.area == schedule.area, Profile.is_active.is_(True))
        )
        for profile in profiles.scalars().all():
            notification = await remind_profile(redis, profile, schedule, now)
            if notification is not None:
                created.append(notification)
    return created
