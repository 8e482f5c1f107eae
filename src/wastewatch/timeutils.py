"""
UTC/portal-timezone helpers.

Everything is stored in UTC. "Today" and pickup dates entered without an
offset are interpreted in the portal's timezone (Africa/Lagos by default).
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo

from wastewatch.config import get_settings


@lru_cache(maxsize=8)
def _zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def portal_tz() -> ZoneInfo:
    return _zone(get_settings().portal_timezone)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` in UTC; naive values (SQLite drops tzinfo) are taken as UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def localize(value: datetime, tz: ZoneInfo | None = None) -> datetime:
    """Convert input from a form to UTC, reading naive values as portal-local wall time."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=tz or portal_tz())
    return value.astimezone(timezone.utc)


def day_window(now: datetime | None = None, tz: ZoneInfo | None = None) -> tuple[datetime, datetime]:
    """``[local midnight today, local midnight tomorrow)`` expressed in UTC."""
    tz = tz or portal_tz()
    local_now = as_utc(now or utcnow()).astimezone(tz)
    start = datetime.combine(local_now.date(), time.min, tzinfo=tz)
    end = datetime.combine(local_now.date() + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def upcoming_window(now: datetime | None = None, hours: int | None = None) -> tuple[datetime, datetime]:
    """``[now, now + hours)`` in UTC; hours defaults to the reminder window."""
    start = as_utc(now or utcnow())
    span = hours if hours is not None else get_settings().reminder_window_hours
    return start, start + timedelta(hours=span)
