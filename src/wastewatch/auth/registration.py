"""
Phone signup as a two-phase saga.

Phase 0 stages the signup in ``pending_registrations`` and texts a code.
Phase 1 records that the phone was verified (committed on its own).
Phase 2 creates the profile and completes the pending row.

A crash between phases 1 and 2 leaves a verified pending row, which the
reconciliation job finalizes later. Unverified rows past ``expires_at`` are
expired by the same job.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from wastewatch.auth import otp
from wastewatch.auth.password import hash_password, validate_password_strength
from wastewatch.auth.service import (
    DuplicateAccountError,
    email_exists,
    get_profile_by_phone,
    normalize_email,
    normalize_phone,
    validate_role_and_area,
)
from wastewatch.config import get_settings
from wastewatch.db.models import PendingRegistration, Profile
from wastewatch.timeutils import as_utc, utcnow

if TYPE_CHECKING:
    from datetime import datetime

    from redis.asyncio import Redis
    from sqlalchemy.ext.asyncio import AsyncSession

    from wastewatch.sms.service import SmsService

logger = structlog.get_logger()

PENDING = "pending"
COMPLETED = "completed"
EXPIRED = "expired"


async def get_open_registration(db: AsyncSession, phone_number: str) -> PendingRegistration | None:
    """Newest pending row for ``phone_number`` (already normalized)."""
    result = await db.execute(
        select(PendingRegistration)
        .where(PendingRegistration.phone_number == phone_number)
        .where(PendingRegistration.status == PENDING)
        .order_by(PendingRegistration.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _send_code(redis: Redis, sms: SmsService, phone_number: str) -> bool:
    code = await otp.issue_code(redis, phone_number)
    sent = await sms.send_verification_code(phone_number, code)
    if not sent:
        logger.warning("otp_delivery_failed", phone=phone_number)
    return sent


async def stage_phone_registration(
    db: AsyncSession,
    redis: Redis,
    sms: SmsService,
    *,
    name: str,
    phone_number: str,
    password: str,
    confirm_password: str | None = None,
    role: str = "resident",
    area: str | None = None,
    verification_code: str | None = None,
    email: str | None = None,
) -> PendingRegistration:
    """
    Validate a phone signup, persist it as pending, and text a code.

    Earlier pending rows for the same number are expired so only the
    newest staged payload can be finalized.

    Raises:
        PasswordStrengthError, ValueError, PermissionError: invalid input.
        DuplicateAccountError: the phone number or email already has a profile.
        OtpCooldownError: a code was sent to this number too recently.
    """
    validate_password_strength(password, confirm_password)
    stored_area = validate_role_and_area(role, area, verification_code)
    phone_number = normalize_phone(phone_number)
    email = normalize_email(email) if email else None

    if await get_profile_by_phone(db, phone_number) is not None:
        msg = "Phone number already registered"
        raise DuplicateAccountError(msg)
    if email and await email_exists(db, email):
        msg = "Email already registered"
        raise DuplicateAccountError(msg)

    await db.execute(
        update(PendingRegistration)
        .where(PendingRegistration.phone_number == phone_number)
        .where(PendingRegistration.status == PENDING)
        .values(status=EXPIRED)
    )

    settings = get_settings()
    now = utcnow()
    pending = PendingRegistration(
        phone_number=phone_number,
        email=email,
        name=name.strip(),
        role=role,
        area=stored_area,
        password_hash=hash_password(password),
        status=PENDING,
        created_at=now,
        expires_at=now + timedelta(hours=settings.pending_registration_ttl_hours),
    )
    db.add(pending)
    await db.flush()

    await _send_code(redis, sms, phone_number)
    await db.commit()
    logger.info("registration_staged", pending_id=pending.id, phone=phone_number, role=role)
    return pending


async def resend_code(db: AsyncSession, redis: Redis, sms: SmsService, phone_number: str) -> None:
    """
    Text a fresh code for an open registration.

    Raises:
        ValueError: no open registration for the number.
        OtpCooldownError: still inside the resend cooldown.
    """
    phone_number = normalize_phone(phone_number)
    pending = await get_open_registration(db, phone_number)
    if pending is None:
        msg = "No pending registration for this phone number"
        raise ValueError(msg)
    await _send_code(redis, sms, phone_number)


async def finalize_registration(db: AsyncSession, pending: PendingRegistration) -> Profile:
    """
    Phase 2: create the profile for a verified pending row.

    Idempotent: a row that already points at a profile returns that profile.

    Raises:
        ValueError: the row has not been verified.
        DuplicateAccountError: another profile claimed the number or email
            meanwhile. The pending row is marked expired (not committed).
    """
    if pending.profile_id is not None:
        existing = await db.get(Profile, pending.profile_id)
        if existing is not None:
            return existing
    if pending.phone_verified_at is None:
        msg = "Phone number has not been verified"
        raise ValueError(msg)

    duplicate = None
    if await get_profile_by_phone(db, pending.phone_number) is not None:
        duplicate = "Phone number already registered"
    elif pending.email and await email_exists(db, pending.email):
        duplicate = "Email already registered"
    if duplicate is not None:
        pending.status = EXPIRED
        await db.flush()
        raise DuplicateAccountError(duplicate)

    pending_id = pending.id
    profile = Profile(
        name=pending.name,
        phone_number=pending.phone_number,
        email=pending.email,
        password_hash=pending.password_hash,
        role=pending.role,
        area=pending.area,
        auth_provider="phone",
        phone_verified=True,
    )
    db.add(profile)
    try:
        await db.flush()
    except IntegrityError as e:
        # Lost a race on the unique phone/email index
        await db.rollback()
        await db.execute(
            update(PendingRegistration).where(PendingRegistration.id == pending_id).values(status=EXPIRED)
        )
        msg = "Phone number or email already registered"
        raise DuplicateAccountError(msg) from e

    pending.profile_id = profile.id
    pending.status = COMPLETED
    pending.completed_at = utcnow()
    await db.flush()
    logger.info("registration_finalized", pending_id=pending.id, profile_id=profile.id)
    return profile


async def verify_phone_registration(db: AsyncSession, redis: Redis, phone_number: str, code: str) -> Profile:
    """
    Confirm the code for a staged signup and create the profile.

    Malformed codes fail before any Redis or database access.

    Raises:
        OtpError: malformed, wrong or expired code.
        ValueError: no open (or an expired) registration for the number.
    """
    otp.ensure_well_formed(code)
    phone_number = normalize_phone(phone_number)

    pending = await get_open_registration(db, phone_number)
    if pending is None:
        msg = "No pending registration for this phone number"
        raise ValueError(msg)
    if as_utc(pending.expires_at) <= utcnow():
        pending.status = EXPIRED
        await db.commit()
        msg = "Registration has expired. Please sign up again."
        raise ValueError(msg)

    await otp.verify_code(redis, phone_number, code)

    pending.phone_verified_at = utcnow()
    await db.commit()

    try:
        profile = await finalize_registration(db, pending)
    except DuplicateAccountError:
        await db.commit()
        raise
    await db.commit()
    return profile


async def reconcile_pending_registrations(db: AsyncSession, now: datetime | None = None) -> dict[str, int]:
    """
    Resume or roll back interrupted signups.

    Verified-but-unfinalized rows are finalized; unverified rows past their
    expiry are marked expired. Each verified row is committed on its own, so
    a conflicting row is expired without holding back the rest of the batch.

    Returns:
        Counts keyed ``finalized``, ``expired`` and ``conflicts``.
    """
    now = as_utc(now or utcnow())
    counts = {"finalized": 0, "expired": 0, "conflicts": 0}

    result = await db.execute(
        select(PendingRegistration.id)
        .where(PendingRegistration.status == PENDING)
        .where(PendingRegistration.phone_verified_at.is_not(None))
    )
    for pending_id in result.scalars().all():
        # Reload: a rollback after a lost race expires every loaded row
        pending = await db.get(PendingRegistration, pending_id, populate_existing=True)
        if pending is None or pending.status != PENDING:
            continue
        try:
            await finalize_registration(db, pending)
        except DuplicateAccountError:
            counts["conflicts"] += 1
            logger.warning("registration_conflict", pending_id=pending_id)
        else:
            counts["finalized"] += 1
        await db.commit()

    expired = await db.execute(
        update(PendingRegistration)
        .where(PendingRegistration.status == PENDING)
        .where(PendingRegistration.phone_verified_at.is_(None))
        .where(PendingRegistration.expires_at <= now)
        .values(status=EXPIRED)
    )
    counts["expired"] = expired.rowcount  # type: ignore[attr-defined]
    await db.commit()
    return counts
