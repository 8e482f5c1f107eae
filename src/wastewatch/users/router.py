"""User endpoints: /api/v1/users/* (self-service and admin)."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wastewatch.auth.dependencies import get_current_user, require_admin
from wastewatch.auth.schemas import ProfileResponse
from wastewatch.auth.service import DuplicateAccountError
from wastewatch.database import get_session
from wastewatch.db.models import Profile
from wastewatch.email.service import get_email_service
from wastewatch.users.schemas import (
    AdminProfileResponse,
    AdminProfileUpdateRequest,
    ProfileUpdateRequest,
    StatusUpdateRequest,
    UserListResponse,
)
from wastewatch.users.service import (
    admin_delete_profile,
    admin_update_profile,
    auth_confirmed,
    delete_account,
    list_profiles,
    set_active,
    update_own_profile,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


def _admin_response(profile: Profile) -> AdminProfileResponse:
    response = AdminProfileResponse.model_validate(profile)
    response.auth_confirmed = auth_confirmed(profile)
    return response


def _user_error(e: Exception) -> HTTPException:
    if isinstance(e, LookupError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, DuplicateAccountError):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


# ---------------------------------------------------------------------------
# Own profile
# ---------------------------------------------------------------------------


@router.get("/me", response_model=ProfileResponse)
async def get_my_profile(user: Profile = Depends(get_current_user)) -> ProfileResponse:
    return ProfileResponse.model_validate(user)


@router.patch("/me", response_model=ProfileResponse)
async def update_my_profile(
    body: ProfileUpdateRequest,
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ProfileResponse:
    try:
        await update_own_profile(db, user, name=body.name, area=body.area)
    except ValueError as e:
        raise _user_error(e) from e
    await db.commit()
    return ProfileResponse.model_validate(user)


@router.delete("/me")
async def delete_my_account(
    user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    """Delete the caller's profile, reports, notifications and sessions."""
    await delete_account(db, user.id)
    await db.commit()
    return {"detail": "Account deleted"}


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    search: str | None = Query(None, max_length=200),
    role: str | None = Query(None),
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> UserListResponse:
    try:
        profiles, total = await list_profiles(db, page=page, per_page=per_page, search=search, role=role)
    except ValueError as e:
        raise _user_error(e) from e
    return UserListResponse(
        users=[_admin_response(p) for p in profiles],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.patch("/{profile_id}", response_model=AdminProfileResponse)
async def update_user(
    profile_id: str,
    body: AdminProfileUpdateRequest,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> AdminProfileResponse:
    try:
        profile = await admin_update_profile(
            db,
            profile_id,
            name=body.name,
            email=body.email,
            role=body.role,
            area=body.area,
        )
    except (LookupError, ValueError) as e:
        raise _user_error(e) from e
    await db.commit()
    logger.info("profile_updated_by_admin", profile_id=profile_id, admin_id=admin.id)
    return _admin_response(profile)


@router.post("/{profile_id}/status", response_model=AdminProfileResponse)
async def change_user_status(
    profile_id: str,
    body: StatusUpdateRequest,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> AdminProfileResponse:
    """Activate or deactivate an account; deactivation is a global sign-out."""
    try:
        profile, revoked = await set_active(db, admin, profile_id, body.is_active)
    except (LookupError, ValueError) as e:
        raise _user_error(e) from e
    await db.commit()
    response = _admin_response(profile)
    logger.info("profile_status_changed", profile_id=profile_id, active=body.is_active, revoked_tokens=revoked)

    if not body.is_active and response.email:
        try:
            await get_email_service().send_template(
                to=response.email,
                template_name="account_deactivated",
                context={"name": response.name},
            )
        except Exception:
            logger.exception("deactivation_email_failed", profile_id=profile_id)
    return response


@router.delete("/{profile_id}")
async def delete_user(
    profile_id: str,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    try:
        await admin_delete_profile(db, admin, profile_id)
    except (LookupError, ValueError) as e:
        raise _user_error(e) from e
    await db.commit()
    logger.info("profile_deleted_by_admin", profile_id=profile_id, admin_id=admin.id)
    return {"detail": "User deleted"}
