"""
Pickup schedules.

Status moves one way only: ``scheduled`` to ``completed`` or ``canceled``,
both terminal. A pickup whose date has already passed can no longer be
transitioned.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select

from wastewatch.db.models import SCHEDULE_STATUSES, PickupSchedule
from wastewatch.timeutils import as_utc, day_window, localize, utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from wastewatch.db.models import Profile

VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    "scheduled": frozenset({"completed", "canceled"}),
    "completed": frozenset(),
    "canceled": frozenset(),
}


class ScheduleNotFoundError(ValueError):
    pass


class InvalidTransitionError(ValueError):
    """The requested status change is not allowed from the current status."""


def validate_transition(current: str, target: str) -> None:
    if target not in SCHEDULE_STATUSES:
        msg = f"Invalid status: {target}"
        raise InvalidTransitionError(msg)
    if target not in VALID_TRANSITIONS.get(current, frozenset()):
        msg = f"Cannot change a {current} pickup to {target}"
        raise InvalidTransitionError(msg)


def _require_staff(user: Profile) -> None:
    if not user.is_staff:
        msg = "Only officials and admins can manage pickup schedules"
        raise PermissionError(msg)


async def create_schedule(
    db: AsyncSession,
    user: Profile,
    *,
    area: str,
    pickup_date: datetime,
    notes: str | None = None,
) -> PickupSchedule:
    """
    Raises:
        PermissionError: ``user`` is a resident.
        ValueError: blank area.
    """
    _require_staff(user)
    area = area.strip()
    if not area:
        msg = "Area is required"
        raise ValueError(msg)

    now = utcnow()
    schedule = PickupSchedule(
        area=area,
        pickup_date=localize(pickup_date),
        status="scheduled",
        notes=(notes or "").strip() or None,
        created_by=user.id,
        created_at=now,
        updated_at=now,
    )
    db.add(schedule)
    await db.flush()
    return schedule


async def list_upcoming(
    db: AsyncSession,
    *,
    area: str | None = None,
    now: datetime | None = None,
    include_closed: bool = False,
    limit: int = 100,
) -> list[PickupSchedule]:
    """Pickups from the start of today onwards, soonest first."""
    start, _ = day_window(now)
    conditions = [PickupSchedule.pickup_date >= start]
    if area:
        conditions.append(PickupSchedule.area == area)
    if not include_closed:
        conditions.append(PickupSchedule.status == "scheduled")
    result = await db.execute(
        select(PickupSchedule).where(*conditions).order_by(PickupSchedule.pickup_date.asc()).limit(limit)
    )
    return list(result.scalars().all())


async def get_schedule(db: AsyncSession, schedule_id: str) -> PickupSchedule:
    schedule = await db.get(PickupSchedule, schedule_id)
    if schedule is None:
        msg = "Schedule not found"
        raise ScheduleNotFoundError(msg)
    return schedule


async def transition_schedule(
    db: AsyncSession,
    user: Profile,
    schedule_id: str,
    target: str,
    now: datetime | None = None,
) -> PickupSchedule:
    """
    Complete or cancel a pickup.

    Raises:
        PermissionError: ``user`` is a resident.
        ScheduleNotFoundError: no such schedule.
        InvalidTransitionError: not ``scheduled``, or the pickup day is over.
    """
    _require_staff(user)
    schedule = await get_schedule(db, schedule_id)
    validate_transition(schedule.status, target)

    today_start, _ = day_window(now)
    if as_utc(schedule.pickup_date) < today_start:
        msg = "Past pickups can no longer be updated"
        raise InvalidTransitionError(msg)

    schedule.status = target
    schedule.updated_at = utcnow()
    await db.flush()
    return schedule


async def delete_schedule(db: AsyncSession, user: Profile, schedule_id: str) -> None:
    """
    Raises:
        PermissionError: ``user`` is a resident.
        ScheduleNotFoundError: no such schedule.
    """
    _require_staff(user)
    schedule = await get_schedule(db, schedule_id)
    await db.delete(schedule)
    await db.flush()
