"""
One-time phone verification codes, stored hashed in Redis.

Keys (all per normalized phone number):

- ``otp:code:{phone}``      sha256 of the current code, TTL ``otp_ttl_seconds``
- ``otp:attempts:{phone}``  wrong guesses against the current code
- ``otp:cooldown:{phone}``  present while a resend is not yet allowed
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from typing import TYPE_CHECKING

import structlog

from wastewatch.config import get_settings

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = structlog.get_logger()


class OtpError(ValueError):
    """Wrong, expired, malformed or exhausted verification code."""


class OtpCooldownError(OtpError):
    """A code was sent too recently to send another."""

    def __init__(self, retry_after: int) -> None:
        super().__init__(f"Please wait {retry_after} seconds before requesting a new code")
        self.retry_after = retry_after


def _keys(phone: str) -> tuple[str, str, str]:
    return f"otp:code:{phone}", f"otp:attempts:{phone}", f"otp:cooldown:{phone}"


def _digest(code: str) -> str:
    return hashlib.sha256(code.encode()).hexdigest()


def generate_code(length: int | None = None) -> str:
    length = length or get_settings().otp_length
    return "".join(secrets.choice("0123456789") for _ in range(length))


def is_well_formed(code: str) -> bool:
    """True only for a string of exactly ``otp_length`` ASCII digits."""
    return len(code) == get_settings().otp_length and code.isascii() and code.isdigit()


def ensure_well_formed(code: str) -> None:
    if not is_well_formed(code):
        msg = f"Verification code must be exactly {get_settings().otp_length} digits"
        raise OtpError(msg)


async def issue_code(redis: Redis, phone: str) -> str:
    """
    Create, store and return a new code for ``phone``.

    Raises:
        OtpCooldownError: a code was issued less than the cooldown ago.
    """
    settings = get_settings()
    code_key, attempts_key, cooldown_key = _keys(phone)

    # SET NX makes the cooldown check and claim a single step
    claimed = await redis.set(cooldown_key, "1", nx=True, ex=settings.otp_resend_cooldown_seconds)
    if not claimed:
        ttl = await redis.ttl(cooldown_key)
        raise OtpCooldownError(max(int(ttl), 1))

    code = generate_code(settings.otp_length)
    pipe = redis.pipeline()
    pipe.set(code_key, _digest(code), ex=settings.otp_ttl_seconds)
    pipe.delete(attempts_key)
    await pipe.execute()
    logger.info("otp_issued", phone=phone)
    return code


async def verify_code(redis: Redis, phone: str, code: str) -> None:
    """
    Check ``code`` against the stored one and consume it on success.

    Malformed codes are rejected before Redis is touched.

    Raises:
        OtpError: malformed, expired, wrong, or too many attempts.
    """
    ensure_well_formed(code)
    settings = get_settings()
    code_key, attempts_key, _ = _keys(phone)

    stored = await redis.get(code_key)
    if stored is None:
        msg = "Verification code has expired or was never sent"
        raise OtpError(msg)

    if not hmac.compare_digest(stored, _digest(code)):
        attempts = await redis.incr(attempts_key)
        if attempts == 1:
            await redis.expire(attempts_key, settings.otp_ttl_seconds)
        if attempts >= settings.otp_max_attempts:
            await redis.delete(code_key, attempts_key)
            logger.warning("otp_attempts_exhausted", phone=phone)
            msg = "Too many incorrect attempts. Request a new code."
            raise OtpError(msg)
        msg = "Invalid verification code"
        raise OtpError(msg)

    await redis.delete(code_key, attempts_key)
