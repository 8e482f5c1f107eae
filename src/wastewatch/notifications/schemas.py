"""Notification request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from wastewatch.timeutils import as_utc

NotificationType = Literal["collection", "report", "system"]


class NotificationResponse(BaseModel):
    id: str
    title: str
    message: str
    type: NotificationType
    for_user_id: str | None = None
    for_all: bool = False
    recipient_role: str | None = None
    created_by: str | None = None
    read: bool
    created_at: datetime
    metadata: dict[str, Any] = {}

    @field_validator("created_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    total: int
    page: int
    per_page: int


class UnreadCountResponse(BaseModel):
    unread_count: int


class NotificationSummaryResponse(BaseModel):
    """Everything the header badge needs in one round trip."""

    unread_count: int
    has_new_notifications: bool
    has_collection_today: bool
    refresh_interval_seconds: int


class NotificationCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=256)
    message: str = Field(..., min_length=1, max_length=5000)
    type: NotificationType = "system"
    for_user_id: str | None = None
    for_all: bool = False
    recipient_role: Literal["resident", "official", "admin"] | None = None
