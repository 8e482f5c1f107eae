"""Authentication router: all /api/v1/auth/* endpoints."""

from __future__ import annotations

import uuid
from datetime import timedelta

import httpx
import jwt as pyjwt
import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from wastewatch.auth import oauth
from wastewatch.auth.dependencies import get_current_user
from wastewatch.auth.jwt import create_access_token, create_refresh_token, verify_token
from wastewatch.auth.otp import OtpCooldownError, OtpError
from wastewatch.auth.registration import resend_code, stage_phone_registration, verify_phone_registration
from wastewatch.auth.schemas import (
    CheckEmailRequest,
    CheckPhoneRequest,
    EmailRegisterRequest,
    ExistsResponse,
    LoginRequest,
    LogoutRequest,
    OAuthAuthorizeResponse,
    OAuthCallbackRequest,
    OAuthSessionRequest,
    PhoneRegisterRequest,
    ProfileResponse,
    RefreshRequest,
    RegistrationResponse,
    ResendCodeRequest,
    TokenResponse,
    VerifyEmailRequest,
    VerifyPhoneRequest,
)
from wastewatch.auth.service import (
    DuplicateAccountError,
    EmailNotVerifiedError,
    authenticate,
    create_verification_token,
    email_exists,
    get_or_create_oauth_profile,
    get_profile_by_email,
    get_profile_by_id,
    get_refresh_token,
    hash_token,
    phone_exists,
    register_email_profile,
    revoke_all_tokens,
    revoke_refresh_token,
    rotate_refresh_token,
    store_refresh_token,
    verify_email_token,
)
from wastewatch.config import get_settings
from wastewatch.database import get_session
from wastewatch.db.models import Profile
from wastewatch.email.service import get_email_service
from wastewatch.redis_client import get_redis
from wastewatch.sms.service import get_sms_service
from wastewatch.timeutils import utcnow

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _verify_url(raw_token: str) -> str:
    base = get_settings().frontend_base_url
    return f"{base}/auth?tab=login&reason=email-verification&token={raw_token}"


def _signup_error(e: Exception) -> HTTPException:
    """Map signup failures onto HTTP status codes."""
    if isinstance(e, OtpCooldownError):
        return HTTPException(status_code=429, detail=str(e), headers={"Retry-After": str(e.retry_after)})
    if isinstance(e, DuplicateAccountError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, PermissionError):
        return HTTPException(status_code=403, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


async def _issue_tokens(
    db: AsyncSession,
    profile: Profile,
    request: Request,
    *,
    created: bool = False,
) -> TokenResponse:
    """Mint an access/refresh pair, persist the refresh hash and commit."""
    settings = get_settings()
    token_id = str(uuid.uuid4())
    access_token = create_access_token(profile.id, profile.role, profile.auth_provider)
    refresh_token = create_refresh_token(profile.id, profile.role, profile.auth_provider, token_id=token_id)

    await store_refresh_token(
        db,
        user_id=profile.id,
        token_id=token_id,
        token_hash=hash_token(refresh_token),
        expires_at=utcnow() + timedelta(days=settings.jwt_refresh_token_expire_days),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    await db.commit()

    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        user=ProfileResponse.model_validate(profile),
        created=created,
    )


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


@router.post("/register/email", response_model=RegistrationResponse, status_code=201)
async def register_email(
    body: EmailRegisterRequest,
    db: AsyncSession = Depends(get_session),
) -> RegistrationResponse:
    """Create an email account; sign-in is allowed once the address is confirmed."""
    try:
        profile = await register_email_profile(
            db,
            name=body.name,
            email=body.email,
            password=body.password,
            confirm_password=body.confirm_password,
            role=body.role,
            area=body.area,
            verification_code=body.verification_code,
        )
    except (ValueError, PermissionError) as e:
        raise _signup_error(e) from e

    raw_token = await create_verification_token(db, profile.id)
    await db.commit()

    try:
        await get_email_service().send_template(
            to=profile.email or "",
            template_name="welcome",
            context={"name": profile.name, "verify_url": _verify_url(raw_token)},
        )
    except Exception:
        logger.exception("verification_email_failed", profile_id=profile.id)

    settings = get_settings()
    status = "verification_required" if settings.require_email_verification else "registered"
    return RegistrationResponse(status=status, email=profile.email)


@router.post("/register/phone", response_model=RegistrationResponse, status_code=201)
async def register_phone(
    body: PhoneRegisterRequest,
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> RegistrationResponse:
    """Stage a phone signup and text a verification code."""
    try:
        pending = await stage_phone_registration(
            db,
            redis,
            get_sms_service(),
            name=body.name,
            phone_number=body.phone_number,
            password=body.password,
            confirm_password=body.confirm_password,
            role=body.role,
            area=body.area,
            verification_code=body.verification_code,
            email=body.email,
        )
    except (ValueError, PermissionError) as e:
        raise _signup_error(e) from e

    return RegistrationResponse(
        status="code_sent",
        phone_number=pending.phone_number,
        resend_after_seconds=get_settings().otp_resend_cooldown_seconds,
    )


@router.post("/verify-phone", response_model=TokenResponse)
async def verify_phone(
    body: VerifyPhoneRequest,
    request: Request,
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> TokenResponse:
    """Confirm the texted code, finalize the account and sign it in."""
    try:
        profile = await verify_phone_registration(db, redis, body.phone_number, body.code)
    except DuplicateAccountError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except OtpError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    profile.last_sign_in_at = utcnow()
    return await _issue_tokens(db, profile, request, created=True)


@router.post("/resend-code")
async def resend_verification_code(
    body: ResendCodeRequest,
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> dict[str, object]:
    try:
        await resend_code(db, redis, get_sms_service(), body.phone_number)
    except OtpCooldownError as e:
        raise HTTPException(status_code=429, detail=str(e), headers={"Retry-After": str(e.retry_after)}) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return {"status": "code_sent", "resend_after_seconds": get_settings().otp_resend_cooldown_seconds}


@router.post("/verify-email")
async def verify_email(
    body: VerifyEmailRequest,
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    try:
        await verify_email_token(db, body.token)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    await db.commit()
    return {"status": "email_verified"}


@router.post("/resend-verification")
async def resend_verification_email(
    body: CheckEmailRequest,
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    """Send a fresh confirmation link. The reply does not reveal whether the address is registered."""
    profile = await get_profile_by_email(db, body.email)
    if profile is not None and profile.auth_provider == "email" and not profile.email_verified:
        raw_token = await create_verification_token(db, profile.id)
        await db.commit()
        try:
            await get_email_service().send_template(
                to=profile.email or body.email,
                template_name="verify_email",
                context={"verify_url": _verify_url(raw_token)},
            )
        except Exception:
            logger.exception("verification_email_failed", profile_id=profile.id)
    return {"status": "verification_sent"}


@router.post("/check-email", response_model=ExistsResponse)
async def check_email(
    body: CheckEmailRequest,
    db: AsyncSession = Depends(get_session),
) -> ExistsResponse:
    """Advisory duplicate check; signup re-checks before committing."""
    return ExistsResponse(exists=await email_exists(db, body.email))


@router.post("/check-phone", response_model=ExistsResponse)
async def check_phone(
    body: CheckPhoneRequest,
    db: AsyncSession = Depends(get_session),
) -> ExistsResponse:
    try:
        exists = await phone_exists(db, body.phone_number)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return ExistsResponse(exists=exists)


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> TokenResponse:
    try:
        profile = await authenticate(db, redis, body.identifier, body.password)
    except ValueError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    except EmailNotVerifiedError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e
    except PermissionError as e:
        detail = str(e)
        if "locked" in detail.lower():
            raise HTTPException(status_code=429, detail=detail) from e
        raise HTTPException(status_code=403, detail=detail) from e

    logger.info("login_succeeded", profile_id=profile.id, role=profile.role)
    return await _issue_tokens(db, profile, request)


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/oauth/{provider}", response_model=OAuthAuthorizeResponse)
async def oauth_authorize(
    provider: str,
    redis: Redis = Depends(get_redis),
) -> OAuthAuthorizeResponse:
    try:
        url, state = await oauth.create_authorization(redis, provider)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return OAuthAuthorizeResponse(authorization_url=url, state=state)


async def _oauth_sign_in(
    db: AsyncSession,
    request: Request,
    identity: oauth.OAuthIdentity,
) -> TokenResponse:
    profile, created = await get_or_create_oauth_profile(
        db, email=identity.email, name=identity.name, provider=identity.provider
    )
    if not profile.is_active:
        raise HTTPException(status_code=403, detail="Account is deactivated")
    profile.last_sign_in_at = utcnow()
    logger.info("oauth_sign_in", profile_id=profile.id, provider=identity.provider, created=created)
    return await _issue_tokens(db, profile, request, created=created)


@router.post("/oauth/{provider}/callback", response_model=TokenResponse)
async def oauth_callback(
    provider: str,
    body: OAuthCallbackRequest,
    request: Request,
    db: AsyncSession = Depends(get_session),
    redis: Redis = Depends(get_redis),
) -> TokenResponse:
    try:
        identity = await oauth.identity_from_code(redis, provider, body.code, body.state)
    except oauth.OAuthError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except httpx.HTTPError as e:
        logger.warning("oauth_provider_unreachable", provider=provider, error=str(e))
        raise HTTPException(status_code=502, detail="Sign-in provider is unavailable") from e
    return await _oauth_sign_in(db, request, identity)


@router.post("/oauth/session", response_model=TokenResponse)
async def oauth_session(
    body: OAuthSessionRequest,
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> TokenResponse:
    """Exchange a provider access token taken from the redirect URL fragment."""
    try:
        identity = await oauth.identity_from_token(body.provider, body.access_token)
    except oauth.OAuthError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except httpx.HTTPError as e:
        logger.warning("oauth_provider_unreachable", provider=body.provider, error=str(e))
        raise HTTPException(status_code=502, detail="Sign-in provider is unavailable") from e
    return await _oauth_sign_in(db, request, identity)


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    body: RefreshRequest,
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> TokenResponse:
    """Rotate a refresh token. Presenting a revoked one signs the user out everywhere."""
    try:
        payload = verify_token(body.refresh_token, expected_type="refresh")
    except pyjwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    jti = payload.get("jti")
    old_token = await get_refresh_token(db, jti) if jti else None
    if old_token is None:
        raise HTTPException(status_code=401, detail="Refresh token not found")
    if old_token.is_revoked:
        await revoke_all_tokens(db, old_token.user_id)
        await db.commit()
        logger.warning("refresh_token_reuse", profile_id=old_token.user_id)
        raise HTTPException(status_code=401, detail="Refresh token has been revoked")

    profile = await get_profile_by_id(db, old_token.user_id)
    if profile is None:
        raise HTTPException(status_code=401, detail="User not found")
    if not profile.is_active:
        raise HTTPException(status_code=403, detail="Account is deactivated")

    settings = get_settings()
    new_token_id = str(uuid.uuid4())
    new_access = create_access_token(profile.id, profile.role, profile.auth_provider)
    new_refresh = create_refresh_token(profile.id, profile.role, profile.auth_provider, token_id=new_token_id)
    await rotate_refresh_token(
        db,
        old_token=old_token,
        new_token_id=new_token_id,
        new_token_hash=hash_token(new_refresh),
        new_expires_at=utcnow() + timedelta(days=settings.jwt_refresh_token_expire_days),
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    await db.commit()

    return TokenResponse(
        access_token=new_access,
        refresh_token=new_refresh,
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        user=ProfileResponse.model_validate(profile),
    )


@router.post("/logout")
async def logout(
    body: LogoutRequest,
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    try:
        payload = verify_token(body.refresh_token, expected_type="refresh")
    except pyjwt.InvalidTokenError:
        # Expired or garbled: nothing left to revoke
        return {"status": "logged_out"}
    jti = payload.get("jti")
    if jti:
        await revoke_refresh_token(db, jti)
        await db.commit()
    return {"status": "logged_out"}


@router.get("/me", response_model=ProfileResponse)
async def me(user: Profile = Depends(get_current_user)) -> ProfileResponse:
    return ProfileResponse.model_validate(user)
