"""Request/response schemas for authentication endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, EmailStr, Field, field_validator

Role = Literal["resident", "official", "admin"]


def _lower(v: str) -> str:
    return v.lower().strip()


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class ProfileResponse(BaseModel):
    id: str
    name: str | None = None
    email: str | None = None
    phone_number: str | None = None
    role: Role
    area: str | None = None
    is_active: bool = True
    email_verified: bool = False
    phone_verified: bool = False
    auth_provider: str = "email"
    last_sign_in_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


class _SignupFields(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    password: str = Field(..., min_length=1, max_length=128)
    confirm_password: str | None = Field(None, max_length=128)
    role: Role = "resident"
    area: str | None = Field(None, max_length=128)
    verification_code: str | None = Field(None, max_length=128)


class EmailRegisterRequest(_SignupFields):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _lower(v)


class PhoneRegisterRequest(_SignupFields):
    phone_number: str = Field(..., min_length=7, max_length=20)
    email: EmailStr | None = None


class RegistrationResponse(BaseModel):
    """Signup accepted; the account still needs email or phone confirmation."""

    status: str
    email: str | None = None
    phone_number: str | None = None
    resend_after_seconds: int | None = None


class VerifyPhoneRequest(BaseModel):
    phone_number: str = Field(..., min_length=7, max_length=20)
    code: str = Field(..., max_length=32)


class ResendCodeRequest(BaseModel):
    phone_number: str = Field(..., min_length=7, max_length=20)


class VerifyEmailRequest(BaseModel):
    token: str


class CheckEmailRequest(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _lower(v)


class CheckPhoneRequest(BaseModel):
    phone_number: str = Field(..., min_length=7, max_length=20)


class ExistsResponse(BaseModel):
    exists: bool


# ---------------------------------------------------------------------------
# Login / OAuth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Email address or phone number, plus password."""

    identifier: str = Field(
        ...,
        min_length=3,
        max_length=320,
        validation_alias=AliasChoices("identifier", "email", "phone_number"),
    )
    password: str = Field(..., min_length=1, max_length=128)


class OAuthAuthorizeResponse(BaseModel):
    authorization_url: str
    state: str


class OAuthCallbackRequest(BaseModel):
    code: str
    state: str


class OAuthSessionRequest(BaseModel):
    """Access token parsed by the browser from the redirect URL fragment."""

    access_token: str
    provider: str = "google"


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = 3600
    user: ProfileResponse
    created: bool = False
