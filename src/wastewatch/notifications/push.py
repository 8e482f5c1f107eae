"""Publish change events and notifications over Redis pub/sub.

The WebSocket bridge consumes these channels:

- ``pubsub:table:{table}``  row-change events ``{table, event, id}``
- ``ws:user:{user_id}``     notifications addressed to one profile
- ``ws:roles``              role-scoped and broadcast notifications; the
                            payload lists the roles that may see it
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from wastewatch.db.models import ROLES

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from wastewatch.db.models import Notification

logger = logging.getLogger(__name__)

TABLE_CHANNEL_PREFIX = "pubsub:table:"
USER_CHANNEL_PREFIX = "ws:user:"
ROLES_CHANNEL = "ws:roles"
TABLE_EVENTS = ("INSERT", "UPDATE", "DELETE")


def audience_roles(notification: Notification) -> list[str]:
    """Roles that see a non-personal notification (for_all or recipient_role)."""
    roles = []
    for role in ROLES:
        if notification.recipient_role == "official" and role == "resident":
            continue
        if notification.for_all or notification.recipient_role == role:
            roles.append(role)
    return roles


def serialize_notification(notification: Notification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "title": notification.title,
        "message": notification.message,
        "type": notification.type,
        "for_user_id": notification.for_user_id,
        "for_all": notification.for_all,
        "recipient_role": notification.recipient_role,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


async def _publish(redis: Redis | None, channel: str, payload: dict[str, Any]) -> bool:
    if redis is None:
        return False
    try:
        await redis.publish(channel, json.dumps(payload))
    except Exception:
        logger.warning("Failed to publish on %s", channel, exc_info=True)
        return False
    return True


async def publish_table_event(redis: Redis | None, table: str, event: str, row_id: str) -> bool:
    """Announce a row change; subscribers re-query rather than trusting a payload."""
    if event not in TABLE_EVENTS:
        msg = f"Invalid table event: {event}"
        raise ValueError(msg)
    return await _publish(redis, f"{TABLE_CHANNEL_PREFIX}{table}", {"table": table, "event": event, "id": row_id})


async def push_notification(redis: Redis | None, notification: Notification) -> None:
    """Route a committed notification to its audience and emit its INSERT event."""
    data = serialize_notification(notification)
    if notification.for_user_id:
        await _publish(
            redis,
            f"{USER_CHANNEL_PREFIX}{notification.for_user_id}",
            {"event": "notification", "data": data},
        )
    roles = audience_roles(notification)
    if roles:
        await _publish(redis, ROLES_CHANNEL, {"event": "notification", "roles": roles, "data": data})
    await publish_table_event(redis, "notifications", "INSERT", notification.id)
