"""Notification creation, targeting and per-viewer read state.

Read state is server-authoritative: every "mark as read" writes a receipt
row in ``notification_reads``. For notifications addressed to one profile
the legacy ``read``/``read_at`` columns are kept in step as well.

A notification targets a viewer when it is addressed to them, broadcast
(``for_all``), or scoped to their role; residents never see notifications
scoped to officials.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy import and_, func, or_, select
from sqlalchemy.sql.elements import ColumnElement

from wastewatch.database import get_session_factory
from wastewatch.db.models import (
    NOTIFICATION_TYPES,
    ROLES,
    Notification,
    NotificationError,
    NotificationRead,
    PickupSchedule,
)
from wastewatch.notifications.push import push_notification
from wastewatch.timeutils import day_window, utcnow

if TYPE_CHECKING:
    from datetime import datetime

    from redis.asyncio import Redis
    from sqlalchemy.ext.asyncio import AsyncSession

    from wastewatch.db.models import Profile

logger = logging.getLogger(__name__)


class Targetable(Protocol):
    id: str
    for_user_id: str | None
    for_all: bool
    recipient_role: str | None


# ---------------------------------------------------------------------------
# Targeting
# ---------------------------------------------------------------------------


def targets(notification: Targetable, user_id: str, role: str) -> bool:
    if notification.recipient_role == "official" and role == "resident":
        return False
    return (
        notification.for_user_id == user_id
        or notification.for_all
        or (notification.recipient_role is not None and notification.recipient_role == role)
    )


def visible_to(user_id: str, role: str) -> ColumnElement[bool]:
    """SQL form of :func:`targets`."""
    clause: ColumnElement[bool] = or_(
        Notification.for_user_id == user_id,
        Notification.for_all.is_(True),
        Notification.recipient_role == role,
    )
    if role == "resident":
        clause = and_(
            clause,
            or_(Notification.recipient_role.is_(None), Notification.recipient_role != "official"),
        )
    return clause


def count_unread(
    notifications: Iterable[Targetable],
    user_id: str,
    role: str,
    server_read_ids: Iterable[str] = (),
    local_read_ids: Iterable[str] = (),
) -> int:
    """Notifications that target the viewer and appear in neither read set."""
    read = set(server_read_ids) | set(local_read_ids)
    return sum(1 for n in notifications if targets(n, user_id, role) and n.id not in read)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


async def create_notification(
    db: AsyncSession,
    *,
    title: str,
    message: str,
    type_: str,
    for_user_id: str | None = None,
    for_all: bool = False,
    recipient_role: str | None = None,
    created_by: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Notification:
    """
    Add a notification to the session (flushed, not committed).

    Raises:
        ValueError: bad type or role, or no audience at all.
    """
    if type_ not in NOTIFICATION_TYPES:
        msg = f"Invalid notification type: {type_}"
        raise ValueError(msg)
    if recipient_role is not None and recipient_role not in ROLES:
        msg = f"Invalid recipient role: {recipient_role}"
        raise ValueError(msg)
    if not (for_user_id or for_all or recipient_role):
        msg = "Notification needs a recipient, a role, or for_all"
        raise ValueError(msg)

    notification = Notification(
        title=title,
        message=message,
        type=type_,
        for_user_id=for_user_id,
        for_all=for_all,
        recipient_role=recipient_role,
        created_by=created_by,
        notification_metadata=metadata or {},
        created_at=utcnow(),
    )
    db.add(notification)
    await db.flush()
    return notification


async def record_notification_error(
    db: AsyncSession,
    error: str,
    *,
    user_id: str | None = None,
    related_table: str | None = None,
    related_operation: str | None = None,
) -> None:
    """Persist a fan-out failure. Never raises; the failure is logged either way."""
    try:
        db.add(
            NotificationError(
                user_id=user_id,
                error_message=error[:2000],
                related_table=related_table,
                related_operation=related_operation,
            )
        )
        await db.commit()
    except Exception:
        await db.rollback()
        logger.warning("Could not record notification error", exc_info=True)


async def notify_safely(
    redis: Redis | None,
    *,
    related_table: str,
    related_operation: str,
    **fields: Any,
) -> Notification | None:
    """
    Create, commit and push a side-effect notification.

    Runs in its own session so the caller's unit of work is never touched:
    call it after the primary write has been committed. Any failure here is
    logged and recorded in ``notification_errors`` and never propagates.
    """
    async with get_session_factory()() as db:
        try:
            notification = await create_notification(db, **fields)
            await db.commit()
        except Exception as exc:
            await db.rollback()
            logger.exception("Notification fan-out failed for %s/%s", related_table, related_operation)
            await record_notification_error(
                db,
                str(exc),
                user_id=fields.get("for_user_id") or fields.get("created_by"),
                related_table=related_table,
                related_operation=related_operation,
            )
            return None

    await push_notification(redis, notification)
    return notification


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_server_read_ids(db: AsyncSession, user_id: str) -> set[str]:
    """Ids this viewer has read: receipts plus directly-addressed rows flagged read."""
    receipts = await db.execute(select(NotificationRead.notification_id).where(NotificationRead.user_id == user_id))
    flagged = await db.execute(
        select(Notification.id).where(Notification.for_user_id == user_id, Notification.read.is_(True))
    )
    return set(receipts.scalars().all()) | set(flagged.scalars().all())


async def get_notification_for_viewer(db: AsyncSession, user: Profile, notification_id: str) -> Notification | None:
    result = await db.execute(
        select(Notification).where(Notification.id == notification_id, visible_to(user.id, user.role))
    )
    return result.scalar_one_or_none()


async def list_notifications(
    db: AsyncSession,
    user: Profile,
    page: int = 1,
    per_page: int = 20,
    *,
    unread_only: bool = False,
) -> tuple[list[tuple[Notification, bool]], int]:
    """Most-recent-first page of ``(notification, is_read)`` for the viewer."""
    read_ids = await get_server_read_ids(db, user.id)
    conditions = [visible_to(user.id, user.role)]
    if unread_only and read_ids:
        conditions.append(Notification.id.not_in(read_ids))

    total = (await db.execute(select(func.count()).select_from(Notification).where(*conditions))).scalar_one()
    result = await db.execute(
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    rows = [(n, n.id in read_ids) for n in result.scalars().all()]
    return rows, total


async def get_unread_count(db: AsyncSession, user: Profile, local_read_ids: Iterable[str] = ()) -> int:
    """
    Unread notifications for the viewer.

    ``local_read_ids`` is the client's optimistic cache of ids it has marked
    read but may not have synced yet; it only ever lowers the count.
    """
    result = await db.execute(
        select(Notification.id, Notification.for_user_id, Notification.for_all, Notification.recipient_role).where(
            visible_to(user.id, user.role)
        )
    )
    rows = result.all()
    return count_unread(rows, user.id, user.role, await get_server_read_ids(db, user.id), local_read_ids)


async def has_collection_today(db: AsyncSession, area: str | None, now: datetime | None = None) -> bool:
    """True if a scheduled pickup for ``area`` falls inside today's portal-local day."""
    if not area:
        return False
    start, end = day_window(now)
    result = await db.execute(
        select(PickupSchedule.id)
        .where(
            PickupSchedule.area == area,
            PickupSchedule.status == "scheduled",
            PickupSchedule.pickup_date >= start,
            PickupSchedule.pickup_date < end,
        )
        .limit(1)
    )
    return result.first() is not None


# ---------------------------------------------------------------------------
# Read receipts
# ---------------------------------------------------------------------------


async def _add_receipt(db: AsyncSession, notification: Notification, user_id: str) -> bool:
    """Record a receipt unless one exists. Returns True if newly read."""
    existing = await db.execute(
        select(NotificationRead.id).where(
            NotificationRead.notification_id == notification.id,
            NotificationRead.user_id == user_id,
        )
    )
    if existing.first() is not None:
        return False
    now = utcnow()
    db.add(NotificationRead(notification_id=notification.id, user_id=user_id, read_at=now))
    if notification.for_user_id == user_id and not notification.read:
        notification.read = True
        notification.read_at = now
    return True


async def mark_as_read(db: AsyncSession, user: Profile, notification_id: str) -> bool:
    """
    Mark one notification read for the viewer. Idempotent.

    Returns:
        False if the notification does not exist or does not target the viewer.
    """
    notification = await get_notification_for_viewer(db, user, notification_id)
    if notification is None:
        return False
    await _add_receipt(db, notification, user.id)
    await db.flush()
    return True


async def mark_all_as_read(db: AsyncSession, user: Profile) -> int:
    """Mark every visible notification read. Returns how many were newly read."""
    read_ids = await get_server_read_ids(db, user.id)
    conditions = [visible_to(user.id, user.role)]
    if read_ids:
        conditions.append(Notification.id.not_in(read_ids))
    result = await db.execute(select(Notification).where(*conditions))
    count = 0
    for notification in result.scalars().all():
        if await _add_receipt(db, notification, user.id):
            count += 1
    await db.flush()
    return count
