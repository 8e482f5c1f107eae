"""WebSocket connection manager.

Tracks active connections, their channel subscriptions, and who is behind
each one (profile id and role) so notifications can be routed per user or
per role.
"""

from __future__ import annotations

import json
import time
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog
from fastapi import WebSocket

logger = structlog.get_logger()

VALID_CHANNELS = {"notifications", "reports", "schedules"}


@dataclass
class ClientConnection:
    """A single WebSocket client."""

    websocket: WebSocket
    user_id: str
    role: str
    subscriptions: set[str] = field(default_factory=set)
    connected_at: float = field(default_factory=time.time)
    messages_sent: int = 0


class ConnectionManager:
    """Manages all active WebSocket connections on this process."""

    def __init__(self) -> None:
        self._connections: dict[str, ClientConnection] = {}  # conn_id -> client
        self._channels: dict[str, set[str]] = defaultdict(set)  # channel -> {conn_ids}
        self._user_connections: dict[str, set[str]] = defaultdict(set)  # user_id -> {conn_ids}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket, conn_id: str, user_id: str, role: str) -> None:
        await websocket.accept()
        self._connections[conn_id] = ClientConnection(websocket=websocket, user_id=user_id, role=role)
        self._user_connections[user_id].add(conn_id)
        logger.info("ws_connected", conn_id=conn_id, user_id=user_id, role=role)

    async def disconnect(self, conn_id: str) -> None:
        """Remove a connection and all of its subscriptions."""
        client = self._connections.pop(conn_id, None)
        if client is None:
            return

        for channel in client.subscriptions:
            self._channels[channel].discard(conn_id)

        self._user_connections[client.user_id].discard(conn_id)
        if not self._user_connections[client.user_id]:
            del self._user_connections[client.user_id]

        logger.info("ws_disconnected", conn_id=conn_id, user_id=client.user_id)

    async def subscribe(self, conn_id: str, channel: str) -> bool:
        """Subscribe a connection to a channel. Returns False if invalid."""
        client = self._connections.get(conn_id)
        if client is None or channel not in VALID_CHANNELS:
            return False
        client.subscriptions.add(channel)
        self._channels[channel].add(conn_id)
        logger.debug("ws_subscribed", conn_id=conn_id, channel=channel)
        return True

    async def unsubscribe(self, conn_id: str, channel: str) -> bool:
        client = self._connections.get(conn_id)
        if client is None:
            return False
        client.subscriptions.discard(channel)
        self._channels[channel].discard(conn_id)
        return True

    async def _send(self, conn_ids: Iterable[str], payload: str) -> int:
        """Send a pre-encoded payload; dead connections are dropped."""
        sent = 0
        failed: list[str] = []
        for conn_id in conn_ids:
            client = self._connections.get(conn_id)
            if client is None:
                failed.append(conn_id)
                continue
            try:
                await client.websocket.send_text(payload)
                client.messages_sent += 1
                sent += 1
            except Exception:
                failed.append(conn_id)

        for conn_id in failed:
            await self.disconnect(conn_id)
        return sent

    async def broadcast_to_channel(self, channel: str, message: dict[str, Any]) -> int:
        """Send to every client subscribed to ``channel``. Returns recipients."""
        conn_ids = list(self._channels.get(channel, set()))
        if not conn_ids:
            return 0
        return await self._send(conn_ids, json.dumps({"channel": channel, "data": message}))

    async def send_to_user(self, user_id: str, channel: str, message: dict[str, Any]) -> int:
        """Send to a user's connections that are subscribed to ``channel``."""
        conn_ids = [
            cid
            for cid in self._user_connections.get(user_id, set())
            if channel in self._connections[cid].subscriptions
        ]
        return await self._send(conn_ids, json.dumps({"channel": channel, "data": message}))

    async def send_to_user_direct(self, user_id: str, message: dict[str, Any]) -> int:
        """Send to every connection of a user, regardless of subscriptions."""
        conn_ids = list(self._user_connections.get(user_id, set()))
        return await self._send(conn_ids, json.dumps(message))

    async def send_to_roles(self, roles: Iterable[str], message: dict[str, Any]) -> int:
        """Send to every connection whose profile holds one of ``roles``."""
        wanted = set(roles)
        conn_ids = [cid for cid, client in self._connections.items() if client.role in wanted]
        return await self._send(conn_ids, json.dumps(message))

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_connections": len(self._connections),
            "unique_users": len(self._user_connections),
            "channels": {ch: len(conns) for ch, conns in self._channels.items() if conns},
        }


manager = ConnectionManager()
