"""Collection reminders are created once per pickup and profile."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wastewatch.db.models import Notification, PickupSchedule
from wastewatch.notifications import reminders
from wastewatch.notifications.reminders import (
    ensure_collection_reminder,
    find_upcoming_schedule,
    reminder_message,
    send_area_reminders,
    sentinel_key,
)
from wastewatch.timeutils import localize

AREA = "Independence Layout"
# Monday 2 March 2026, 08:00 in Lagos
NOW = localize(datetime(2026, 3, 2, 8, 0))


@pytest_asyncio.fixture
async def schedule(db_session: AsyncSession, make_profile) -> PickupSchedule:
    official = await make_profile(role="official")
    row = PickupSchedule(
        area=AREA,
        pickup_date=NOW + timedelta(hours=3),
        status="scheduled",
        created_by=official.id,
    )
    db_session.add(row)
    await db_session.commit()
    return row


async def _reminders(db: AsyncSession) -> list[Notification]:
    result = await db.execute(select(Notification).where(Notification.type == "collection"))
    return list(result.scalars().all())


def test_message_uses_portal_time():
    message = reminder_message(AREA, NOW + timedelta(hours=3))
    assert message.startswith(f"A waste collection is scheduled for your area ({AREA}) on Monday, Mar 02, 11:00 AM.")


class TestLookup:
    async def test_finds_pickup_in_window(self, db_session: AsyncSession, schedule):
        found = await find_upcoming_schedule(db_session, AREA, NOW)
        assert found is not None
        assert found.id == schedule.id

    async def test_outside_window(self, db_session: AsyncSession, schedule):
        assert await find_upcoming_schedule(db_session, AREA, NOW + timedelta(hours=4)) is None
        assert await find_upcoming_schedule(db_session, AREA, NOW - timedelta(hours=22)) is None

    async def test_other_area(self, db_session: AsyncSession, schedule):
        assert await find_upcoming_schedule(db_session, "Abakpa", NOW) is None


class TestEnsureReminder:
    async def test_created_once(self, db_session: AsyncSession, redis_client, make_profile, schedule):
        resident = await make_profile(area=AREA)

        first = await ensure_collection_reminder(db_session, redis_client, resident, NOW)
        second = await ensure_collection_reminder(db_session, redis_client, resident, NOW)

        assert first is not None
        assert first.for_user_id == resident.id
        assert first.title == "Upcoming Waste Collection"
        assert first.notification_metadata["schedule_id"] == schedule.id
        assert second is None
        assert len(await _reminders(db_session)) == 1

    async def test_concurrent_checks_create_one(self, db_session: AsyncSession, redis_client, make_profile, schedule):
        resident = await make_profile(area=AREA)
        results = await asyncio.gather(
            *(reminders.remind_profile(redis_client, resident, schedule, NOW) for _ in range(3))
        )
        assert sum(r is not None for r in results) == 1
        assert len(await _reminders(db_session)) == 1

    async def test_sentinel_released_on_failure(
        self, db_session: AsyncSession, redis_client, make_profile, schedule, monkeypatch: pytest.MonkeyPatch
    ):
        resident = await make_profile(area=AREA)

        async def failing_notify(*args: object, **kwargs: object) -> None:
            return None

        original = reminders.notify_safely
        monkeypatch.setattr(reminders, "notify_safely", failing_notify)
        assert await ensure_collection_reminder(db_session, redis_client, resident, NOW) is None
        assert await redis_client.exists(sentinel_key(schedule.id, resident.id)) == 0

        monkeypatch.setattr(reminders, "notify_safely", original)
        assert await ensure_collection_reminder(db_session, redis_client, resident, NOW) is not None

    async def test_sentinel_outlives_pickup(self, db_session: AsyncSession, redis_client, make_profile, schedule):
        resident = await make_profile(area=AREA)
        await ensure_collection_reminder(db_session, redis_client, resident, NOW)
        ttl = await redis_client.ttl(sentinel_key(schedule.id, resident.id))
        assert ttl > 3 * 3600

    async def test_profile_without_area(self, db_session: AsyncSession, redis_client, make_profile, schedule):
        official = await make_profile(role="official")
        assert await ensure_collection_reminder(db_session, redis_client, official, NOW) is None


class TestAreaSweep:
    async def test_reminds_active_residents_of_area(
        self, db_session: AsyncSession, redis_client, make_profile, schedule
    ):
        first = await make_profile(area=AREA)
        second = await make_profile(area=AREA)
        await make_profile(area="Abakpa")
        await make_profile(area=AREA, is_active=False)

        created = await send_area_reminders(db_session, redis_client, NOW)
        assert {n.for_user_id for n in created} == {first.id, second.id}

        assert await send_area_reminders(db_session, redis_client, NOW) == []

    async def test_sweep_and_lazy_check_share_sentinel(
        self, db_session: AsyncSession, redis_client, make_profile, schedule
    ):
        resident = await make_profile(area=AREA)
        await ensure_collection_reminder(db_session, redis_client, resident, NOW)
        assert await send_area_reminders(db_session, redis_client, NOW) == []
        assert len(await _reminders(db_session)) == 1
