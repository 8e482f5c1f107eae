"""Pickup schedule request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from wastewatch.timeutils import as_utc

ScheduleStatus = Literal["scheduled", "completed", "canceled"]


class ScheduleCreateRequest(BaseModel):
    area: str = Field(..., min_length=1, max_length=128)
    pickup_date: datetime
    notes: str | None = Field(None, max_length=2000)


class ScheduleResponse(BaseModel):
    id: str
    area: str
    pickup_date: datetime
    status: ScheduleStatus
    notes: str | None = None
    created_by: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("pickup_date", "created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class ScheduleListResponse(BaseModel):
    schedules: list[ScheduleResponse]
    total: int
