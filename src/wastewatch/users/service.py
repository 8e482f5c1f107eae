"""Profile self-service and admin user management."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, func, or_, select

from wastewatch.auth.service import DuplicateAccountError, normalize_email, revoke_all_tokens
from wastewatch.db.models import (
    ROLES,
    EmailVerificationToken,
    Notification,
    NotificationRead,
    Profile,
    RefreshToken,
    Report,
)
from wastewatch.timeutils import utcnow

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


def auth_confirmed(profile: Profile) -> bool:
    """Whether the identity behind the profile has been confirmed by any channel."""
    return profile.email_verified or profile.phone_verified or profile.auth_provider == "google"


async def _ensure_email_free(db: AsyncSession, email: str, profile_id: str) -> None:
    taken = await db.execute(select(Profile.id).where(Profile.email == email, Profile.id != profile_id))
    if taken.first() is not None:
        msg = "An account with this email already exists"
        raise DuplicateAccountError(msg)


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


async def update_own_profile(
    db: AsyncSession,
    user: Profile,
    name: str | None = None,
    area: str | None = None,
) -> Profile:
    """
    Update the caller's own name or area. Role is never self-editable.

    Raises:
        ValueError: blank name, or a resident clearing their area.
    """
    if name is not None:
        if not name.strip():
            msg = "Name cannot be empty"
            raise ValueError(msg)
        user.name = name.strip()
    if area is not None:
        if not area.strip() and user.role == "resident":
            msg = "Please specify your area"
            raise ValueError(msg)
        user.area = area.strip() or None
    user.updated_at = utcnow()
    await db.flush()
    return user


async def delete_account(db: AsyncSession, profile_id: str) -> None:
    """
    Remove a profile and everything that belongs to it.

    Rows are deleted explicitly rather than relying on ``ON DELETE CASCADE``,
    which SQLite only honours with foreign keys switched on.
    """
    await db.execute(delete(NotificationRead).where(NotificationRead.user_id == profile_id))
    personal = select(Notification.id).where(Notification.for_user_id == profile_id)
    await db.execute(delete(NotificationRead).where(NotificationRead.notification_id.in_(personal)))
    await db.execute(delete(Notification).where(Notification.for_user_id == profile_id))
    await db.execute(delete(Report).where(Report.user_id == profile_id))
    await db.execute(delete(RefreshToken).where(RefreshToken.user_id == profile_id))
    await db.execute(delete(EmailVerificationToken).where(EmailVerificationToken.user_id == profile_id))
    await db.execute(delete(Profile).where(Profile.id == profile_id))
    await db.flush()
    logger.info("account_deleted", profile_id=profile_id)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


async def list_profiles(
    db: AsyncSession,
    *,
    page: int = 1,
    per_page: int = 20,
    search: str | None = None,
    role: str | None = None,
) -> tuple[list[Profile], int]:
    conditions = []
    if role:
        if role not in ROLES:
            msg = f"Invalid role: {role}"
            raise ValueError(msg)
        conditions.append(Profile.role == role)
    if search:
        pattern = f"%{search.strip()}%"
        conditions.append(
            or_(
                Profile.name.ilike(pattern),
                Profile.email.ilike(pattern),
                Profile.phone_number.ilike(pattern),
                Profile.area.ilike(pattern),
            )
        )

    total = (await db.execute(select(func.count()).select_from(Profile).where(*conditions))).scalar_one()
    result = await db.execute(
        select(Profile)
        .where(*conditions)
        .order_by(Profile.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def get_profile(db: AsyncSession, profile_id: str) -> Profile:
    profile = await db.get(Profile, profile_id)
    if profile is None:
        msg = "User not found"
        raise LookupError(msg)
    return profile


async def admin_update_profile(
    db: AsyncSession,
    profile_id: str,
    *,
    name: str | None = None,
    email: str | None = None,
    role: str | None = None,
    area: str | None = None,
) -> Profile:
    """
    Raises:
        LookupError: no such profile.
        ValueError: unknown role.
        DuplicateAccountError: email already used by another profile.
    """
    profile = await get_profile(db, profile_id)
    if role is not None:
        if role not in ROLES:
            msg = f"Invalid role: {role}"
            raise ValueError(msg)
        profile.role = role
    if email is not None:
        email = normalize_email(email)
        if email != profile.email:
            await _ensure_email_free(db, email, profile.id)
            profile.email = email
    if name is not None:
        profile.name = name.strip() or profile.name
    if area is not None:
        profile.area = area.strip() or None
    profile.updated_at = utcnow()
    await db.flush()
    return profile


async def set_active(db: AsyncSession, actor: Profile, profile_id: str, active: bool) -> tuple[Profile, int]:
    """
    Activate or deactivate a profile. Deactivation signs it out everywhere.

    Returns:
        ``(profile, revoked_refresh_tokens)``.
    """
    if profile_id == actor.id and not active:
        msg = "You cannot deactivate your own account"
        raise ValueError(msg)
    profile = await get_profile(db, profile_id)
    profile.is_active = active
    profile.updated_at = utcnow()
    revoked = 0 if active else await revoke_all_tokens(db, profile.id)
    await db.flush()
    return profile, revoked


async def admin_delete_profile(db: AsyncSession, actor: Profile, profile_id: str) -> None:
    if profile_id == actor.id:
        msg = "Use account deletion to remove your own account"
        raise ValueError(msg)
    await get_profile(db, profile_id)
    await delete_account(db, profile_id)
