"""FastAPI dependencies for authentication and role checks."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from wastewatch.auth.jwt import verify_token
from wastewatch.auth.service import get_profile_by_id
from wastewatch.database import get_session
from wastewatch.db.models import ROLES, Profile

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> Profile:
    """
    Resolve the bearer access token to an active profile.

    The role is always read from the database, never from the token, so a
    demotion takes effect on the next request.
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated", headers={"WWW-Authenticate": "Bearer"})
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    profile = await get_profile_by_id(db, str(payload["sub"]))
    if profile is None:
        raise HTTPException(status_code=401, detail="User not found")
    if not profile.is_active:
        raise HTTPException(status_code=403, detail="Account is deactivated")
    return profile


def require_roles(*roles: str) -> Callable[..., Awaitable[Profile]]:
    """Dependency factory: the caller must hold one of ``roles``."""
    unknown = set(roles) - set(ROLES)
    if unknown:
        msg = f"Unknown roles: {sorted(unknown)}"
        raise ValueError(msg)

    async def _check(user: Profile = Depends(get_current_user)) -> Profile:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="You do not have permission to perform this action")
        return user

    return _check


require_staff = require_roles("official", "admin")
require_admin = require_roles("admin")
