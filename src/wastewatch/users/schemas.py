"""User management schemas."""

from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field

from wastewatch.auth.schemas import ProfileResponse, Role


class ProfileUpdateRequest(BaseModel):
    name: str | None = Field(None, max_length=128)
    area: str | None = Field(None, max_length=128)


class AdminProfileResponse(ProfileResponse):
    """Profile as seen on the manage-users page."""

    auth_confirmed: bool = False


class AdminProfileUpdateRequest(BaseModel):
    name: str | None = Field(None, max_length=128)
    email: EmailStr | None = None
    role: Role | None = None
    area: str | None = Field(None, max_length=128)


class StatusUpdateRequest(BaseModel):
    is_active: bool


class UserListResponse(BaseModel):
    users: list[AdminProfileResponse]
    total: int
    page: int
    per_page: int
