"""Notification list, read receipts, badge summary and staff broadcasts."""

from __future__ import annotations

import json

from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wastewatch.db.models import Notification, NotificationError, NotificationRead
from wastewatch.notifications.service import create_notification, notify_safely


async def _seed(db: AsyncSession, **fields: object) -> Notification:
    fields.setdefault("title", "Notice")
    fields.setdefault("message", "Something happened")
    fields.setdefault("type_", "system")
    notification = await create_notification(db, **fields)
    await db.commit()
    return notification


class TestListing:
    async def test_lists_targeted_newest_first(
        self, client: AsyncClient, make_profile, auth_headers, db_session: AsyncSession
    ):
        resident = await make_profile()
        first = await _seed(db_session, title="First", for_all=True)
        second = await _seed(db_session, title="Second", for_user_id=resident.id)
        await _seed(db_session, title="Staff only", recipient_role="official")
        await _seed(db_session, title="Someone else", for_user_id="another-user")

        data = (await client.get("/api/v1/notifications", headers=auth_headers(resident))).json()
        assert [n["id"] for n in data["notifications"]] == [second.id, first.id]
        assert data["total"] == 2
        assert all(n["read"] is False for n in data["notifications"])

    async def test_unread_only(self, client: AsyncClient, make_profile, auth_headers, db_session: AsyncSession):
        resident = await make_profile()
        read = await _seed(db_session, for_all=True)
        unread = await _seed(db_session, for_all=True)
        headers = auth_headers(resident)
        await client.post(f"/api/v1/notifications/{read.id}/read", headers=headers)

        data = (await client.get("/api/v1/notifications", params={"unread_only": True}, headers=headers)).json()
        assert [n["id"] for n in data["notifications"]] == [unread.id]


class TestReadState:
    async def test_mark_one_read(self, client: AsyncClient, make_profile, auth_headers, db_session: AsyncSession):
        resident = await make_profile()
        personal = await _seed(db_session, for_user_id=resident.id)
        headers = auth_headers(resident)

        response = await client.post(f"/api/v1/notifications/{personal.id}/read", headers=headers)
        assert response.status_code == 200
        # Idempotent
        await client.post(f"/api/v1/notifications/{personal.id}/read", headers=headers)

        receipts = (await db_session.execute(select(NotificationRead))).scalars().all()
        assert len(receipts) == 1
        await db_session.refresh(personal)
        assert personal.read is True
        assert personal.read_at is not None

    async def test_broadcast_read_is_per_viewer(
        self, client: AsyncClient, make_profile, auth_headers, db_session: AsyncSession
    ):
        alice = await make_profile()
        bola = await make_profile()
        broadcast = await _seed(db_session, for_all=True)

        await client.post(f"/api/v1/notifications/{broadcast.id}/read", headers=auth_headers(alice))

        alice_count = (await client.get("/api/v1/notifications/unread-count", headers=auth_headers(alice))).json()
        bola_count = (await client.get("/api/v1/notifications/unread-count", headers=auth_headers(bola))).json()
        assert alice_count == {"unread_count": 0}
        assert bola_count == {"unread_count": 1}

    async def test_cannot_read_untargeted(
        self, client: AsyncClient, make_profile, auth_headers, db_session: AsyncSession
    ):
        resident = await make_profile()
        staff_only = await _seed(db_session, recipient_role="official")
        response = await client.post(f"/api/v1/notifications/{staff_only.id}/read", headers=auth_headers(resident))
        assert response.status_code == 404

    async def test_read_all(self, client: AsyncClient, make_profile, auth_headers, db_session: AsyncSession):
        resident = await make_profile()
        await _seed(db_session, for_all=True)
        await _seed(db_session, for_user_id=resident.id)
        await _seed(db_session, recipient_role="resident")
        headers = auth_headers(resident)

        response = await client.post("/api/v1/notifications/read-all", headers=headers)
        assert response.json()["count"] == 3
        again = await client.post("/api/v1/notifications/read-all", headers=headers)
        assert again.json()["count"] == 0


class TestSummary:
    async def test_local_read_ids_lower_badge(
        self, client: AsyncClient, make_profile, auth_headers, db_session: AsyncSession
    ):
        resident = await make_profile(area="Nowhere Estate")
        one = await _seed(db_session, for_all=True)
        await _seed(db_session, for_all=True)
        headers = auth_headers(resident)

        summary = (await client.get("/api/v1/notifications/summary", headers=headers)).json()
        assert summary["unread_count"] == 2
        assert summary["has_new_notifications"] is True
        assert summary["has_collection_today"] is False
        assert summary["refresh_interval_seconds"] > 0

        merged = (
            await client.get("/api/v1/notifications/summary", params={"local_read_ids": [one.id]}, headers=headers)
        ).json()
        assert merged["unread_count"] == 1

    async def test_empty(self, client: AsyncClient, make_profile, auth_headers):
        official = await make_profile(role="official")
        summary = (await client.get("/api/v1/notifications/summary", headers=auth_headers(official))).json()
        assert summary["unread_count"] == 0
        assert summary["has_new_notifications"] is False


class TestStaffNotifications:
    async def test_broadcast(self, client: AsyncClient, make_profile, auth_headers, redis_client):
        admin = await make_profile(role="admin")
        resident = await make_profile()
        pubsub = redis_client.pubsub()
        await pubsub.subscribe("ws:roles")
        await pubsub.get_message(timeout=1)

        response = await client.post(
            "/api/v1/notifications",
            json={"title": "Holiday", "message": "No pickups on Monday", "for_all": True},
            headers=auth_headers(admin),
        )
        assert response.status_code == 201
        assert response.json()["created_by"] == admin.id

        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1)
        assert message is not None
        payload = json.loads(message["data"])
        assert payload["roles"] == ["resident", "official", "admin"]
        await pubsub.aclose()

        count = (await client.get("/api/v1/notifications/unread-count", headers=auth_headers(resident))).json()
        assert count == {"unread_count": 1}

    async def test_role_scoped(self, client: AsyncClient, make_profile, auth_headers):
        official = await make_profile(role="official")
        colleague = await make_profile(role="official")
        resident = await make_profile()
        await client.post(
            "/api/v1/notifications",
            json={"title": "Staff meeting", "message": "At 10", "recipient_role": "official"},
            headers=auth_headers(official),
        )
        staff = (await client.get("/api/v1/notifications/unread-count", headers=auth_headers(colleague))).json()
        residents = (await client.get("/api/v1/notifications/unread-count", headers=auth_headers(resident))).json()
        assert staff == {"unread_count": 1}
        assert residents == {"unread_count": 0}

    async def test_unknown_recipient(self, client: AsyncClient, make_profile, auth_headers):
        official = await make_profile(role="official")
        response = await client.post(
            "/api/v1/notifications",
            json={"title": "Hi", "message": "Hello", "for_user_id": "missing"},
            headers=auth_headers(official),
        )
        assert response.status_code == 404

    async def test_needs_an_audience(self, client: AsyncClient, make_profile, auth_headers):
        official = await make_profile(role="official")
        response = await client.post(
            "/api/v1/notifications", json={"title": "Hi", "message": "Hello"}, headers=auth_headers(official)
        )
        assert response.status_code == 400

    async def test_resident_cannot_send(self, client: AsyncClient, make_profile, auth_headers):
        resident = await make_profile()
        response = await client.post(
            "/api/v1/notifications",
            json={"title": "Hi", "message": "Hello", "for_all": True},
            headers=auth_headers(resident),
        )
        assert response.status_code == 403


class TestFanOutFailures:
    async def test_failure_is_recorded_not_raised(self, database, redis_client, db_session: AsyncSession):
        result = await notify_safely(
            redis_client,
            related_table="reports",
            related_operation="UPDATE",
            title="Broken",
            message="Bad type",
            type_="carrier-pigeon",
            for_user_id="user-9",
        )
        assert result is None

        error = (await db_session.execute(select(NotificationError))).scalar_one()
        assert error.user_id == "user-9"
        assert error.related_table == "reports"
        assert error.related_operation == "UPDATE"
        assert "carrier-pigeon" in error.error_message
        assert (await db_session.execute(select(Notification))).first() is None

    async def test_success_pushes_to_user_channel(self, database, redis_client):
        pubsub = redis_client.pubsub()
        await pubsub.subscribe("ws:user:user-9")
        await pubsub.get_message(timeout=1)

        notification = await notify_safely(
            redis_client,
            related_table="reports",
            related_operation="UPDATE",
            title="Done",
            message="Resolved",
            type_="report",
            for_user_id="user-9",
        )
        assert notification is not None
        message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1)
        assert json.loads(message["data"])["data"]["id"] == notification.id
        await pubsub.aclose()
