"""arq worker: collection reminder fan-out and signup reconciliation.

Runs as a separate process next to the API:

    arq wastewatch.workers.settings.WorkerSettings
"""

from __future__ import annotations

import logging
from datetime import datetime

from arq import cron
from arq.connections import RedisSettings

from wastewatch.auth.registration import reconcile_pending_registrations
from wastewatch.auth.service import get_profile_by_id
from wastewatch.config import get_settings
from wastewatch.database import close_db, get_session_factory, init_db
from wastewatch.email.service import get_email_service
from wastewatch.notifications.reminders import format_pickup_time, send_area_reminders
from wastewatch.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["redis"] = await init_redis(settings.redis_url, max_connections=20)
    logger.info("Worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    await close_db()
    await close_redis()
    logger.info("Worker shut down")


async def send_collection_reminders(ctx: dict) -> int:  # type: ignore[type-arg]
    """Remind everyone in an area with a pickup inside the reminder window."""
    settings = get_settings()
    async with get_session_factory()() as db:
        created = await send_area_reminders(db, ctx["redis"])

        if settings.reminder_emails_enabled:
            email = get_email_service(ctx["redis"])
            for notification in created:
                profile = await get_profile_by_id(db, notification.for_user_id or "")
                if profile is None or not profile.email:
                    continue
                pickup = datetime.fromisoformat(notification.notification_metadata["pickup_date"])
                try:
                    await email.send_template(
                        to=profile.email,
                        template_name="collection_reminder",
                        context={"name": profile.name, "area": profile.area, "pickup_time": format_pickup_time(pickup)},
                    )
                except Exception:
                    logger.exception("Reminder email failed for %s", profile.id)

    if created:
        logger.info("Created %d collection reminders", len(created))
    return len(created)


async def reconcile_registrations(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Finalize verified phone signups left half-done; expire abandoned ones."""
    async with get_session_factory()() as db:
        counts = await reconcile_pending_registrations(db)
    if any(counts.values()):
        logger.info(
            "Reconciled pending registrations: finalized=%d expired=%d conflicts=%d",
            counts["finalized"],
            counts["expired"],
            counts["conflicts"],
        )
    return counts


class WorkerSettings:
    """arq worker settings for the scheduled jobs."""

    functions = [send_collection_reminders, reconcile_registrations]
    cron_jobs = [
        cron(send_collection_reminders, minute=set(range(0, 60, 5)), run_at_startup=True),
        cron(reconcile_registrations, minute=set(range(0, 60, 10))),
    ]
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 4
