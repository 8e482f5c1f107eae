"""Report analytics for the admin dashboard.

Totals by status, the five busiest areas and a trend series for a time range.
Results are cached in Redis for ``analytics_cache_ttl_seconds``.
"""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Any, NamedTuple

import redis.asyncio as aioredis
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wastewatch.config import get_settings
from wastewatch.db.models import Report
from wastewatch.timeutils import as_utc, portal_tz, utcnow

logger = structlog.get_logger()

ANALYTICS_CACHE_KEY = "analytics:reports:{range}"
RANGES: dict[str, timedelta | None] = {
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
    "all": None,
}
DAY_LABELS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")
WEEK_LABELS = ("Week 1", "Week 2", "Week 3", "Week 4")
MONTH_LABELS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


class ReportRow(NamedTuple):
    status: str
    user_area: str | None
    location: str | None
    created_at: datetime


def area_of(row: ReportRow) -> str:
    return row.user_area or row.location or "Unknown"


def _weekday(d: datetime) -> int:
    # isoweekday is Mon=1..Sun=7; the chart starts on Sunday
    return d.isoweekday() % 7


def _week_of_month(d: datetime) -> int:
    return min((d.day - 1) // 7, 3)


def _month(d: datetime) -> int:
    return d.month - 1


TREND_BUCKETS: dict[str, tuple[tuple[str, ...], Callable[[datetime], int]]] = {
    "week": (DAY_LABELS, _weekday),
    "month": (WEEK_LABELS, _week_of_month),
    "year": (MONTH_LABELS, _month),
    "all": (MONTH_LABELS, _month),
}


def trend(rows: Iterable[ReportRow], range_: str) -> list[dict[str, Any]]:
    """
    Bucket reports for the chart.

    ``week`` buckets by weekday, ``month`` by week of the month (days 29-31
    fold into week 4), ``year`` and ``all`` by calendar month.
    """
    labels, bucket = TREND_BUCKETS[range_]
    tz = portal_tz()
    counts = [0] * len(labels)
    for row in rows:
        counts[bucket(as_utc(row.created_at).astimezone(tz))] += 1
    return [{"label": label, "reports": count} for label, count in zip(labels, counts)]


def summarize(rows: list[ReportRow], range_: str) -> dict[str, Any]:
    """Pure aggregation over reports already filtered to the range."""
    statuses = Counter(row.status for row in rows)
    areas = Counter(area_of(row) for row in rows)
    return {
        "range": range_,
        "total_reports": len(rows),
        "pending_reports": statuses["pending"],
        "in_progress_reports": statuses["in-progress"],
        "resolved_reports": statuses["resolved"],
        "reports_by_status": [
            {"status": "pending", "count": statuses["pending"]},
            {"status": "in-progress", "count": statuses["in-progress"]},
            {"status": "resolved", "count": statuses["resolved"]},
        ],
        # most_common keeps first-seen order on ties
        "reports_by_area": [{"area": area, "count": count} for area, count in areas.most_common(5)],
        "reports_trend": trend(rows, range_),
    }


async def get_report_analytics(
    db: AsyncSession,
    redis: aioredis.Redis | None,
    range_: str = "month",
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Raises:
        ValueError: unknown range.
    """
    if range_ not in RANGES:
        msg = f"Invalid range: {range_}"
        raise ValueError(msg)

    cache_key = ANALYTICS_CACHE_KEY.format(range=range_)
    if redis is not None and now is None:
        cached = await redis.get(cache_key)
        if cached:
            return json.loads(cached)

    query = select(Report.status, Report.user_area, Report.location, Report.created_at).order_by(
        Report.created_at.asc()
    )
    span = RANGES[range_]
    if span is not None:
        query = query.where(Report.created_at >= as_utc(now or utcnow()) - span)
    result = await db.execute(query)
    stats = summarize([ReportRow(*row) for row in result.all()], range_)

    if redis is not None and now is None:
        await redis.setex(cache_key, get_settings().analytics_cache_ttl_seconds, json.dumps(stats))
    return stats
