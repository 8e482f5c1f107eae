"""
Report lifecycle.

Residents file reports and see only their own; officials and admins see
everything and may move a report between any two statuses or delete it.
Role checks happen here as well as in the router dependencies.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select

from wastewatch.db.models import REPORT_STATUSES, Report
from wastewatch.reports.images import parse_coordinates, validate_images
from wastewatch.timeutils import utcnow

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from wastewatch.db.models import Profile


def canonical_status(status: str) -> str:
    # Older clients send "completed" for resolved reports
    return "resolved" if status == "completed" else status


class ReportNotFoundError(ValueError):
    """No such report, or the viewer may not see it."""


def _require_staff(user: Profile) -> None:
    if not user.is_staff:
        msg = "Only officials and admins can manage reports"
        raise PermissionError(msg)


def _required(value: str, field: str) -> str:
    value = value.strip()
    if not value:
        msg = f"{field} is required"
        raise ValueError(msg)
    return value


async def create_report(
    db: AsyncSession,
    user: Profile,
    *,
    title: str,
    description: str,
    location: str,
    waste_type: str,
    images: Sequence[str] = (),
    latitude: float | None = None,
    longitude: float | None = None,
) -> Report:
    """
    File a new report as ``user``; it always starts ``pending``.

    Raises:
        ValueError: a required field is blank.
        ImageValidationError: image cap or size exceeded, or not an image.
    """
    location = _required(location, "Location")
    if latitude is None or longitude is None:
        coords = parse_coordinates(location)
        if coords is not None:
            latitude, longitude = coords

    now = utcnow()
    report = Report(
        user_id=user.id,
        user_name=user.name,
        user_area=user.area,
        title=_required(title, "Title"),
        description=_required(description, "Description"),
        location=location,
        latitude=latitude,
        longitude=longitude,
        waste_type=_required(waste_type, "Category"),
        status="pending",
        images=validate_images(images),
        created_at=now,
        updated_at=now,
    )
    db.add(report)
    await db.flush()
    return report


async def list_reports(
    db: AsyncSession,
    user: Profile,
    *,
    page: int = 1,
    per_page: int = 20,
    status: str | None = None,
    search: str | None = None,
) -> tuple[list[Report], int]:
    """Newest-first page of the reports ``user`` may see."""
    conditions = []
    if not user.is_staff:
        conditions.append(Report.user_id == user.id)
    if status:
        status = canonical_status(status)
        if status not in REPORT_STATUSES:
            msg = f"Invalid status: {status}"
            raise ValueError(msg)
        conditions.append(Report.status == status)
    if search:
        pattern = f"%{search.strip()}%"
        conditions.append(
            or_(
                Report.title.ilike(pattern),
                Report.description.ilike(pattern),
                Report.location.ilike(pattern),
                Report.waste_type.ilike(pattern),
                Report.user_name.ilike(pattern),
            )
        )

    total = (await db.execute(select(func.count()).select_from(Report).where(*conditions))).scalar_one()
    result = await db.execute(
        select(Report)
        .where(*conditions)
        .order_by(Report.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def get_report(db: AsyncSession, user: Profile, report_id: str) -> Report:
    """
    Raises:
        ReportNotFoundError: missing, or owned by someone else and ``user`` is a resident.
    """
    report = await db.get(Report, report_id)
    if report is None or (not user.is_staff and report.user_id != user.id):
        msg = "Report not found"
        raise ReportNotFoundError(msg)
    return report


async def update_report_status(db: AsyncSession, user: Profile, report_id: str, status: str) -> tuple[Report, str]:
    """
    Set a report's status. Any status may follow any other.

    Returns:
        ``(report, previous_status)``.

    Raises:
        PermissionError: ``user`` is a resident.
        ValueError: unknown status.
        ReportNotFoundError: no such report.
    """
    _require_staff(user)
    status = canonical_status(status)
    if status not in REPORT_STATUSES:
        msg = f"Invalid status: {status}"
        raise ValueError(msg)
    report = await get_report(db, user, report_id)
    previous = report.status
    report.status = status
    report.updated_at = utcnow()
    await db.flush()
    return report, previous


async def delete_report(db: AsyncSession, user: Profile, report_id: str) -> None:
    _require_staff(user)
    report = await get_report(db, user, report_id)
    await db.delete(report)
    await db.flush()
