"""Tests for the Redis pub/sub to WebSocket bridge."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from wastewatch.notifications.push import ROLES_CHANNEL
from wastewatch.ws.bridge import CHANNEL_MAP, USER_PATTERN, PubSubBridge
from wastewatch.ws.manager import VALID_CHANNELS


@pytest.fixture
def connections() -> MagicMock:
    mock = MagicMock()
    mock.broadcast_to_channel = AsyncMock(return_value=1)
    mock.send_to_user_direct = AsyncMock(return_value=1)
    mock.send_to_roles = AsyncMock(return_value=2)
    return mock


@pytest.fixture
def bridge(connections: MagicMock) -> PubSubBridge:
    return PubSubBridge(MagicMock(), connections=connections)


class TestChannelMapping:
    def test_all_redis_channels_mapped(self) -> None:
        for redis_ch, ws_ch in CHANNEL_MAP.items():
            assert ws_ch in VALID_CHANNELS, f"{redis_ch} maps to unknown {ws_ch}"

    def test_table_channels(self) -> None:
        assert CHANNEL_MAP["pubsub:table:reports"] == "reports"
        assert CHANNEL_MAP["pubsub:table:pickup_schedules"] == "schedules"
        assert CHANNEL_MAP["pubsub:table:notifications"] == "notifications"


class TestDispatch:
    async def test_table_event(self, bridge: PubSubBridge, connections: MagicMock) -> None:
        event = {"table": "reports", "event": "UPDATE", "id": "r1"}
        sent = await bridge.dispatch(
            {"type": "message", "channel": "pubsub:table:reports", "data": json.dumps(event)}
        )
        assert sent == 1
        connections.broadcast_to_channel.assert_awaited_once_with("reports", event)

    async def test_user_notification(self, bridge: PubSubBridge, connections: MagicMock) -> None:
        payload = {"event": "notification", "data": {"id": "n1", "title": "Done"}}
        await bridge.dispatch(
            {"type": "pmessage", "pattern": USER_PATTERN, "channel": "ws:user:user-7", "data": json.dumps(payload)}
        )
        connections.send_to_user_direct.assert_awaited_once_with(
            "user-7", {"type": "notification", "payload": {"id": "n1", "title": "Done"}}
        )

    async def test_role_notification(self, bridge: PubSubBridge, connections: MagicMock) -> None:
        payload = {"event": "notification", "roles": ["official", "admin"], "data": {"id": "n2"}}
        sent = await bridge.dispatch({"type": "message", "channel": ROLES_CHANNEL, "data": json.dumps(payload)})
        assert sent == 2
        connections.send_to_roles.assert_awaited_once_with(
            ["official", "admin"], {"type": "notification", "payload": {"id": "n2"}}
        )

    async def test_bytes_payload(self, bridge: PubSubBridge, connections: MagicMock) -> None:
        await bridge.dispatch(
            {"type": "message", "channel": b"pubsub:table:pickup_schedules", "data": b'{"id": "s1"}'}
        )
        connections.broadcast_to_channel.assert_awaited_once_with("schedules", {"id": "s1"})

    @pytest.mark.parametrize("data", ["not json", "[1, 2]", None])
    async def test_invalid_payload_ignored(self, bridge: PubSubBridge, connections: MagicMock, data) -> None:
        sent = await bridge.dispatch({"type": "message", "channel": "pubsub:table:reports", "data": data})
        assert sent == 0
        connections.broadcast_to_channel.assert_not_awaited()

    async def test_unknown_channel(self, bridge: PubSubBridge, connections: MagicMock) -> None:
        assert await bridge.dispatch({"type": "message", "channel": "pubsub:other", "data": "{}"}) == 0

    async def test_empty_user_id(self, bridge: PubSubBridge, connections: MagicMock) -> None:
        assert await bridge.dispatch({"type": "pmessage", "channel": "ws:user:", "data": "{}"}) == 0
        connections.send_to_user_direct.assert_not_awaited()


class TestLifecycle:
    async def test_forwards_published_events(self, redis_client, connections: MagicMock) -> None:
        bridge = PubSubBridge(redis_client, connections=connections)
        task = asyncio.create_task(bridge.start())
        try:
            # Messages published before the bridge subscribes are lost, so keep publishing
            for _ in range(100):
                await redis_client.publish("pubsub:table:reports", json.dumps({"id": "r9"}))
                await asyncio.sleep(0.02)
                if connections.broadcast_to_channel.await_count:
                    break
        finally:
            await bridge.stop()
            await asyncio.wait_for(task, timeout=5)

        connections.broadcast_to_channel.assert_awaited_with("reports", {"id": "r9"})
