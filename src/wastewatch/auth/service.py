"""
Authentication business logic.

Profile lookup, email signup, login by email or phone, account lockout,
refresh-token rotation and email verification tokens.
"""

from __future__ import annotations

import hashlib
import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from wastewatch.auth.password import (
    check_needs_rehash,
    hash_password,
    validate_password_strength,
    verify_password,
)
from wastewatch.config import get_settings
from wastewatch.db.models import (
    ROLES,
    STAFF_ROLES,
    EmailVerificationToken,
    Profile,
    RefreshToken,
)
from wastewatch.timeutils import as_utc

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

_PHONE_DIGITS = re.compile(r"^\+\d{8,15}$")
_NIGERIA_CODE = "234"


class EmailNotVerifiedError(PermissionError):
    """Correct password, but the account's email address is still unconfirmed."""


class DuplicateAccountError(ValueError):
    """The email or phone number already belongs to a profile."""


def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode()).hexdigest()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_phone(phone: str) -> str:
    """
    Normalize a phone number to E.164.

    Local Nigerian forms are accepted: ``8012345678`` and ``08012345678``
    both become ``+2348012345678``.

    Raises:
        ValueError: if the result is not a plausible E.164 number.
    """
    raw = phone.strip()
    digits = re.sub(r"\D", "", raw)
    if raw.startswith("+"):
        normalized = f"+{digits}"
    elif len(digits) == 10:
        normalized = f"+{_NIGERIA_CODE}{digits}"
    elif len(digits) == 11 and digits.startswith("0"):
        normalized = f"+{_NIGERIA_CODE}{digits[1:]}"
    else:
        normalized = f"+{digits}"

    if not _PHONE_DIGITS.match(normalized):
        msg = "Invalid phone number"
        raise ValueError(msg)
    return normalized


def validate_role_and_area(role: str, area: str | None, verification_code: str | None) -> str | None:
    """
    Check signup role rules and return the area to store.

    Residents must name their area. Officials and admins must present the
    staff signup code and are stored without an area.

    Raises:
        ValueError: unknown role or missing resident area.
        PermissionError: wrong or unconfigured staff signup code.
    """
    if role not in ROLES:
        msg = f"Invalid role: {role}"
        raise ValueError(msg)
    if role in STAFF_ROLES:
        expected = get_settings().staff_signup_code
        if not expected or not verification_code or not secrets.compare_digest(verification_code, expected):
            msg = "Invalid verification code"
            raise PermissionError(msg)
        return None
    if not area or not area.strip():
        msg = "Please specify your area"
        raise ValueError(msg)
    return area.strip()


# ---------------------------------------------------------------------------
# Profile queries
# ---------------------------------------------------------------------------


async def get_profile_by_id(db: AsyncSession, profile_id: str) -> Profile | None:
    result = await db.execute(select(Profile).where(Profile.id == profile_id))
    return result.scalar_one_or_none()


async def get_profile_by_email(db: AsyncSession, email: str) -> Profile | None:
    """Case-insensitive email lookup."""
    result = await db.execute(select(Profile).where(func.lower(Profile.email) == normalize_email(email)))
    return result.scalar_one_or_none()


async def get_profile_by_phone(db: AsyncSession, phone_number: str) -> Profile | None:
    result = await db.execute(select(Profile).where(Profile.phone_number == phone_number))
    return result.scalar_one_or_none()


async def email_exists(db: AsyncSession, email: str) -> bool:
    return await get_profile_by_email(db, email) is not None


async def phone_exists(db: AsyncSession, phone_number: str) -> bool:
    return await get_profile_by_phone(db, normalize_phone(phone_number)) is not None


# ---------------------------------------------------------------------------
# Email signup
# ---------------------------------------------------------------------------


async def register_email_profile(
    db: AsyncSession,
    *,
    name: str,
    email: str,
    password: str,
    confirm_password: str | None = None,
    role: str = "resident",
    area: str | None = None,
    verification_code: str | None = None,
) -> Profile:
    """
    Create a profile for an email signup.

    Existence is checked again here, immediately before the insert, and the
    unique index is the final arbiter if two signups still race.

    Raises:
        PasswordStrengthError: weak or mismatched password.
        DuplicateAccountError: email already registered.
        ValueError / PermissionError: from role and area validation.
    """
    validate_password_strength(password, confirm_password)
    stored_area = validate_role_and_area(role, area, verification_code)
    email = normalize_email(email)

    if await email_exists(db, email):
        msg = "Email already registered"
        raise DuplicateAccountError(msg)

    settings = get_settings()
    profile = Profile(
        name=name.strip(),
        email=email,
        password_hash=hash_password(password),
        role=role,
        area=stored_area,
        auth_provider="email",
        email_verified=not settings.require_email_verification,
    )
    db.add(profile)
    try:
        await db.flush()
    except IntegrityError as e:
        await db.rollback()
        msg = "Email already registered"
        raise DuplicateAccountError(msg) from e
    logger.info("profile_created", profile_id=profile.id, role=role, method="email")
    return profile


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


async def authenticate(db: AsyncSession, redis: Redis, identifier: str, password: str) -> Profile:
    """
    Authenticate with an email address or phone number plus password.

    Raises:
        ValueError: unknown identifier or wrong password.
        PermissionError: account locked or deactivated.
        EmailNotVerifiedError: email signup not yet confirmed.
    """
    invalid = "Invalid login credentials"
    if "@" in identifier:
        profile = await get_profile_by_email(db, identifier)
    else:
        try:
            profile = await get_profile_by_phone(db, normalize_phone(identifier))
        except ValueError:
            profile = None
    if profile is None or not profile.password_hash:
        raise ValueError(invalid)

    if await check_account_lockout(redis, profile.id):
        msg = "Account temporarily locked. Try again later."
        raise PermissionError(msg)

    if not verify_password(password, profile.password_hash):
        await increment_failed_login(redis, profile.id)
        raise ValueError(invalid)

    if not profile.is_active:
        msg = "Account is deactivated"
        raise PermissionError(msg)

    settings = get_settings()
    if (
        settings.require_email_verification
        and profile.auth_provider == "email"
        and profile.email
        and not profile.email_verified
    ):
        msg = "Email not verified. Please check your email and verify your account before logging in."
        raise EmailNotVerifiedError(msg)

    await clear_failed_login(redis, profile.id)
    profile.last_sign_in_at = datetime.now(timezone.utc)

    if check_needs_rehash(profile.password_hash):
        profile.password_hash = hash_password(password)
        logger.info("password_rehashed", profile_id=profile.id)
    await db.flush()
    return profile


# ---------------------------------------------------------------------------
# Account lockout
# ---------------------------------------------------------------------------


async def check_account_lockout(redis: Redis, profile_id: str) -> bool:
    count = await redis.get(f"login_attempts:{profile_id}")
    if count is None:
        return False
    return int(count) >= get_settings().account_lockout_threshold


async def increment_failed_login(redis: Redis, profile_id: str) -> int:
    key = f"login_attempts:{profile_id}"
    count = await redis.incr(key)
    if count == 1:
        await redis.expire(key, get_settings().account_lockout_duration_minutes * 60)
    return int(count)


async def clear_failed_login(redis: Redis, profile_id: str) -> None:
    await redis.delete(f"login_attempts:{profile_id}")


# ---------------------------------------------------------------------------
# OAuth profiles
# ---------------------------------------------------------------------------


async def get_or_create_oauth_profile(
    db: AsyncSession,
    *,
    email: str,
    name: str | None,
    provider: str,
) -> tuple[Profile, bool]:
    """
    Find the profile for a provider-verified email, or create a basic resident one.

    Returns:
        ``(profile, created)``.
    """
    profile = await get_profile_by_email(db, email)
    if profile is not None:
        if not profile.email_verified:
            # The provider has vouched for the address
            profile.email_verified = True
        return profile, False

    profile = Profile(
        name=name or email.split("@")[0] or "User",
        email=normalize_email(email),
        role="resident",
        auth_provider=provider,
        email_verified=True,
    )
    db.add(profile)
    await db.flush()
    logger.info("profile_created", profile_id=profile.id, role="resident", method=provider)
    return profile, True


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


async def store_refresh_token(
    db: AsyncSession,
    user_id: str,
    token_id: str,
    token_hash: str,
    expires_at: datetime,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> RefreshToken:
    token = RefreshToken(
        id=token_id,
        user_id=user_id,
        token_hash=token_hash,
        issued_at=datetime.now(timezone.utc),
        expires_at=expires_at,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(token)
    await db.flush()
    return token


async def get_refresh_token(db: AsyncSession, token_id: str) -> RefreshToken | None:
    result = await db.execute(select(RefreshToken).where(RefreshToken.id == token_id))
    return result.scalar_one_or_none()


async def rotate_refresh_token(
    db: AsyncSession,
    old_token: RefreshToken,
    new_token_id: str,
    new_token_hash: str,
    new_expires_at: datetime,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> RefreshToken:
    """Revoke ``old_token`` and link it to its replacement."""
    old_token.is_revoked = True
    old_token.revoked_at = datetime.now(timezone.utc)
    old_token.replaced_by = new_token_id
    return await store_refresh_token(
        db,
        user_id=old_token.user_id,
        token_id=new_token_id,
        token_hash=new_token_hash,
        expires_at=new_expires_at,
        ip_address=ip_address,
        user_agent=user_agent,
    )


async def revoke_refresh_token(db: AsyncSession, token_id: str) -> bool:
    token = await get_refresh_token(db, token_id)
    if token is None:
        return False
    token.is_revoked = True
    token.revoked_at = datetime.now(timezone.utc)
    await db.flush()
    return True


async def revoke_all_tokens(db: AsyncSession, user_id: str) -> int:
    """Global sign-out: revoke every live refresh token of ``user_id``."""
    result = await db.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id)
        .where(RefreshToken.is_revoked == False)  # noqa: E712
        .values(is_revoked=True, revoked_at=datetime.now(timezone.utc))
    )
    await db.flush()
    return result.rowcount  # type: ignore[attr-defined, no-any-return]


# ---------------------------------------------------------------------------
# Email verification tokens
# ---------------------------------------------------------------------------


async def create_verification_token(db: AsyncSession, user_id: str) -> str:
    """Issue a fresh token (older unused ones are retired) and return the raw value."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    raw_token = secrets.token_urlsafe(48)

    await db.execute(
        update(EmailVerificationToken)
        .where(EmailVerificationToken.user_id == user_id)
        .where(EmailVerificationToken.used_at == None)  # noqa: E711
        .values(used_at=now)
    )
    db.add(
        EmailVerificationToken(
            user_id=user_id,
            token_hash=hash_token(raw_token),
            created_at=now,
            expires_at=now + timedelta(hours=settings.email_verification_token_ttl_hours),
        )
    )
    await db.flush()
    return raw_token


async def verify_email_token(db: AsyncSession, raw_token: str) -> str:
    """
    Consume a verification token and mark the profile's email verified.

    Returns:
        The profile id.

    Raises:
        ValueError: unknown, used or expired token.
    """
    result = await db.execute(
        select(EmailVerificationToken).where(EmailVerificationToken.token_hash == hash_token(raw_token))
    )
    token = result.scalar_one_or_none()
    if token is None:
        msg = "Invalid or expired verification token"
        raise ValueError(msg)
    if token.used_at is not None:
        msg = "Token has already been used"
        raise ValueError(msg)
    now = datetime.now(timezone.utc)
    if as_utc(token.expires_at) < now:
        msg = "Verification token has expired"
        raise ValueError(msg)

    token.used_at = now
    await db.execute(update(Profile).where(Profile.id == token.user_id).values(email_verified=True))
    await db.flush()
    return token.user_id

