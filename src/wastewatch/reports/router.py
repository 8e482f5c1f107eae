"""Report endpoints: /api/v1/reports/*."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from wastewatch.auth.dependencies import get_current_user, require_staff
from wastewatch.database import get_session
from wastewatch.db.models import Profile, Report
from wastewatch.notifications.push import publish_table_event
from wastewatch.notifications.service import notify_safely
from wastewatch.redis_client import get_redis
from wastewatch.reports.schemas import (
    ReportCreateRequest,
    ReportListResponse,
    ReportResponse,
    ReportStatusUpdateRequest,
)
from wastewatch.reports.service import (
    ReportNotFoundError,
    create_report,
    delete_report,
    get_report,
    list_reports,
    update_report_status,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/reports", tags=["Reports"])

STATUS_LABELS = {"pending": "Pending", "in-progress": "In Progress", "resolved": "Resolved"}


def _report_error(e: Exception) -> HTTPException:
    if isinstance(e, ReportNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, PermissionError):
        return HTTPException(status_code=403, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def _response(report: Report) -> ReportResponse:
    return ReportResponse.model_validate(report)


@router.post("", response_model=ReportResponse, status_code=201)
async def submit_report(
    body: ReportCreateRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> ReportResponse:
    try:
        report = await create_report(
            db,
            user,
            title=body.title,
            description=body.description,
            location=body.location,
            waste_type=body.waste_type,
            images=body.images,
            latitude=body.latitude,
            longitude=body.longitude,
        )
    except ValueError as e:
        raise _report_error(e) from e
    await db.commit()
    response = _response(report)
    logger.info("report_created", report_id=report.id, user_id=user.id, waste_type=report.waste_type)

    await publish_table_event(redis, "reports", "INSERT", report.id)
    await notify_safely(
        redis,
        related_table="reports",
        related_operation="INSERT",
        title="New Waste Report",
        message=f"A new {response.waste_type} report was submitted at {response.location}: {response.title}",
        type_="report",
        for_all=True,
        created_by=user.id,
        metadata={"report_id": response.id},
    )
    return response


@router.get("", response_model=ReportListResponse)
async def list_my_reports(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    status: str | None = Query(None),
    search: str | None = Query(None, max_length=200),
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ReportListResponse:
    """Residents get their own reports; staff get every report."""
    try:
        reports, total = await list_reports(db, user, page=page, per_page=per_page, status=status, search=search)
    except ValueError as e:
        raise _report_error(e) from e
    return ReportListResponse(reports=[_response(r) for r in reports], total=total, page=page, per_page=per_page)


@router.get("/{report_id}", response_model=ReportResponse)
async def get_one_report(
    report_id: str,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ReportResponse:
    try:
        return _response(await get_report(db, user, report_id))
    except ValueError as e:
        raise _report_error(e) from e


@router.patch("/{report_id}/status", response_model=ReportResponse)
async def change_report_status(
    report_id: str,
    body: ReportStatusUpdateRequest,
    user: Profile = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> ReportResponse:
    try:
        report, previous = await update_report_status(db, user, report_id, body.status)
    except (ValueError, PermissionError) as e:
        raise _report_error(e) from e
    await db.commit()
    response = _response(report)
    logger.info("report_status_changed", report_id=report_id, previous=previous, status=response.status)

    await publish_table_event(redis, "reports", "UPDATE", report_id)
    if previous != response.status:
        await notify_safely(
            redis,
            related_table="reports",
            related_operation="UPDATE",
            title="Report Status Updated",
            message=f'Your report "{response.title}" is now {STATUS_LABELS[response.status]}.',
            type_="report",
            for_user_id=response.user_id,
            created_by=user.id,
            metadata={"report_id": report_id, "status": response.status},
        )
    return response


@router.delete("/{report_id}")
async def remove_report(
    report_id: str,
    user: Profile = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> dict[str, str]:
    try:
        await delete_report(db, user, report_id)
    except (ValueError, PermissionError) as e:
        raise _report_error(e) from e
    await db.commit()
    logger.info("report_deleted", report_id=report_id, user_id=user.id)
    await publish_table_event(redis, "reports", "DELETE", report_id)
    return {"detail": "Report deleted"}
