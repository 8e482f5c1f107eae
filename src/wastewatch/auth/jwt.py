"""
Access and refresh JWTs.

HS256 with a shared secret by default; any ``RS*`` algorithm switches to the
PEM key pair on disk. Both token kinds carry the profile ``role`` so the
WebSocket endpoint can authorize without a database round trip.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import jwt

from wastewatch.config import get_settings

_private_key: str | None = None
_public_key: str | None = None


def _signing_keys() -> tuple[str, str]:
    """Return ``(signing_key, verification_key)`` for the configured algorithm."""
    global _private_key, _public_key  # noqa: PLW0603
    settings = get_settings()
    if not settings.jwt_algorithm.upper().startswith("RS"):
        return settings.jwt_secret_key, settings.jwt_secret_key
    if _private_key is None or _public_key is None:
        _private_key = Path(settings.jwt_private_key_path).read_text()
        _public_key = Path(settings.jwt_public_key_path).read_text()
    return _private_key, _public_key


def reset_keys() -> None:
    """Forget cached PEM keys (after key rotation, or between tests)."""
    global _private_key, _public_key  # noqa: PLW0603
    _private_key = None
    _public_key = None


def _encode(payload: dict[str, Any]) -> str:
    signing_key, _ = _signing_keys()
    return jwt.encode(payload, signing_key, algorithm=get_settings().jwt_algorithm)


def create_access_token(user_id: str, role: str, auth_provider: str = "email") -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    return _encode(
        {
            "sub": user_id,
            "role": role,
            "auth_provider": auth_provider,
            "iat": now,
            "exp": now + timedelta(minutes=settings.jwt_access_token_expire_minutes),
            "iss": settings.jwt_issuer,
            "type": "access",
        }
    )


def create_refresh_token(user_id: str, role: str, auth_provider: str = "email", *, token_id: str) -> str:
    """Long-lived token; ``token_id`` becomes the JTI tracked in ``refresh_tokens``."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    return _encode(
        {
            "sub": user_id,
            "role": role,
            "auth_provider": auth_provider,
            "jti": token_id,
            "iat": now,
            "exp": now + timedelta(days=settings.jwt_refresh_token_expire_days),
            "iss": settings.jwt_issuer,
            "type": "refresh",
        }
    )


def verify_token(token: str, expected_type: str = "access") -> dict[str, Any]:
    """
    Decode and validate a token.

    Raises:
        jwt.InvalidTokenError: if the token is malformed, expired, from another
            issuer, or of the wrong type.
    """
    _, verification_key = _signing_keys()
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            verification_key,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if payload.get("type") != expected_type:
        msg = f"Expected token type '{expected_type}', got '{payload.get('type')}'"
        raise jwt.InvalidTokenError(msg)
    return payload
