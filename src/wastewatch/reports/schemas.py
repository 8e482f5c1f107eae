"""Report request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field, field_validator

from wastewatch.reports.service import canonical_status
from wastewatch.timeutils import as_utc

ReportStatus = Literal["pending", "in-progress", "resolved"]


class ReportCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    location: str = Field(..., min_length=1, max_length=256)
    waste_type: str = Field(
        ...,
        min_length=1,
        max_length=64,
        validation_alias=AliasChoices("waste_type", "category"),
    )
    images: list[str] = []
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)


class ReportStatusUpdateRequest(BaseModel):
    status: ReportStatus

    @field_validator("status", mode="before")
    @classmethod
    def accept_completed(cls, v: object) -> object:
        return canonical_status(v) if isinstance(v, str) else v


class ReportResponse(BaseModel):
    id: str
    user_id: str
    user_name: str | None = None
    user_area: str | None = None
    title: str
    description: str
    location: str
    latitude: float | None = None
    longitude: float | None = None
    waste_type: str
    status: ReportStatus
    images: list[str] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class ReportListResponse(BaseModel):
    reports: list[ReportResponse]
    total: int
    page: int
    per_page: int
