"""Bridges Redis pub/sub to WebSocket clients.

Row-change events are fanned out to channel subscribers; notifications are
routed to the addressed profile or to every connection holding an allowed
role.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import redis.asyncio as aioredis
import structlog

from wastewatch.notifications.push import ROLES_CHANNEL, TABLE_CHANNEL_PREFIX, USER_CHANNEL_PREFIX
from wastewatch.ws.manager import ConnectionManager, manager

logger = structlog.get_logger()

# Redis pub/sub channel -> WebSocket channel
CHANNEL_MAP: dict[str, str] = {
    f"{TABLE_CHANNEL_PREFIX}reports": "reports",
    f"{TABLE_CHANNEL_PREFIX}pickup_schedules": "schedules",
    f"{TABLE_CHANNEL_PREFIX}notifications": "notifications",
}

USER_PATTERN = f"{USER_CHANNEL_PREFIX}*"


class PubSubBridge:
    """Subscribes to Redis pub/sub and pushes messages to WebSocket clients."""

    def __init__(self, redis_client: aioredis.Redis, connections: ConnectionManager | None = None) -> None:
        self.redis = redis_client
        self.connections = connections or manager
        self._running = False

    async def start(self) -> None:
        """Listen until :meth:`stop` is called or the task is cancelled."""
        self._running = True
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(*CHANNEL_MAP.keys(), ROLES_CHANNEL)
        await pubsub.psubscribe(USER_PATTERN)
        logger.info("pubsub_bridge_started", channels=[*CHANNEL_MAP.keys(), ROLES_CHANNEL], patterns=[USER_PATTERN])

        try:
            while self._running:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None:
                    continue
                await self.dispatch(message)
        except asyncio.CancelledError:
            pass
        finally:
            await pubsub.unsubscribe()
            await pubsub.punsubscribe()
            await pubsub.aclose()
            logger.info("pubsub_bridge_stopped")

    async def stop(self) -> None:
        self._running = False

    async def dispatch(self, message: dict[str, Any]) -> int:
        """Route one raw pub/sub message. Returns the number of recipients."""
        redis_channel = message.get("channel", "")
        if isinstance(redis_channel, bytes):
            redis_channel = redis_channel.decode()

        try:
            data = message.get("data", b"")
            if isinstance(data, bytes):
                data = data.decode()
            payload = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
            logger.warning("pubsub_invalid_message", channel=redis_channel)
            return 0
        if not isinstance(payload, dict):
            logger.warning("pubsub_invalid_message", channel=redis_channel)
            return 0

        if message.get("type") == "pmessage" and redis_channel.startswith(USER_CHANNEL_PREFIX):
            user_id = redis_channel[len(USER_CHANNEL_PREFIX) :]
            if not user_id:
                logger.warning("pubsub_invalid_user_id", channel=redis_channel)
                return 0
            sent = await self.connections.send_to_user_direct(
                user_id, {"type": payload.get("event", "notification"), "payload": payload.get("data", payload)}
            )
            if sent:
                logger.debug("user_notification_sent", user_id=user_id, recipients=sent)
            return sent

        if redis_channel == ROLES_CHANNEL:
            roles = payload.get("roles") or []
            return await self.connections.send_to_roles(
                roles, {"type": payload.get("event", "notification"), "payload": payload.get("data", payload)}
            )

        ws_channel = CHANNEL_MAP.get(redis_channel)
        if ws_channel is None:
            return 0
        sent = await self.connections.broadcast_to_channel(ws_channel, payload)
        if sent:
            logger.debug("pubsub_broadcast", channel=ws_channel, recipients=sent)
        return sent
