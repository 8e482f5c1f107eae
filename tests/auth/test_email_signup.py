"""Email signup, verification, existence checks and login."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wastewatch.auth import service as auth_service
from wastewatch.db.models import Profile

STAFF_CODE = "ENUGU-STAFF-2024"


def _signup(**overrides: object) -> dict[str, object]:
    body: dict[str, object] = {
        "name": "Ada Obi",
        "email": "ada@example.com",
        "password": "Secure123",
        "confirm_password": "Secure123",
        "role": "resident",
        "area": "Trans-Ekulu",
    }
    body.update(overrides)
    return body


class TestEmailRegistration:
    async def test_register_resident(self, client: AsyncClient, mock_email_service, db_session: AsyncSession):
        response = await client.post("/api/v1/auth/register/email", json=_signup())
        assert response.status_code == 201
        assert response.json() == {
            "status": "verification_required",
            "email": "ada@example.com",
            "phone_number": None,
            "resend_after_seconds": None,
        }
        profile = (await db_session.execute(select(Profile).where(Profile.email == "ada@example.com"))).scalar_one()
        assert profile.role == "resident"
        assert profile.area == "Trans-Ekulu"
        assert profile.email_verified is False
        mock_email_service.send_template.assert_awaited_once()
        assert mock_email_service.send_template.call_args.kwargs["template_name"] == "welcome"

    async def test_email_is_normalized(self, client: AsyncClient, mock_email_service):
        response = await client.post("/api/v1/auth/register/email", json=_signup(email="Ada@Example.COM"))
        assert response.json()["email"] == "ada@example.com"

    async def test_resident_requires_area(self, client: AsyncClient, mock_email_service):
        response = await client.post("/api/v1/auth/register/email", json=_signup(area=""))
        assert response.status_code == 400
        assert response.json()["detail"] == "Please specify your area"

    async def test_staff_requires_code(self, client: AsyncClient, mock_email_service):
        response = await client.post("/api/v1/auth/register/email", json=_signup(role="official", area=None))
        assert response.status_code == 403
        assert response.json()["detail"] == "Invalid verification code"

    async def test_staff_with_code(self, client: AsyncClient, mock_email_service, db_session: AsyncSession):
        response = await client.post(
            "/api/v1/auth/register/email",
            json=_signup(role="official", area=None, verification_code=STAFF_CODE),
        )
        assert response.status_code == 201
        profile = (await db_session.execute(select(Profile).where(Profile.email == "ada@example.com"))).scalar_one()
        assert profile.role == "official"
        assert profile.area is None

    async def test_password_mismatch(self, client: AsyncClient, mock_email_service):
        response = await client.post("/api/v1/auth/register/email", json=_signup(confirm_password="Other1234"))
        assert response.status_code == 400
        assert "do not match" in response.json()["detail"]


class TestDuplicateDetection:
    async def test_check_email(self, client: AsyncClient, make_profile):
        await make_profile(email="taken@example.com")
        taken = await client.post("/api/v1/auth/check-email", json={"email": "TAKEN@example.com"})
        free = await client.post("/api/v1/auth/check-email", json={"email": "free@example.com"})
        assert taken.json() == {"exists": True}
        assert free.json() == {"exists": False}

    async def test_check_phone(self, client: AsyncClient, make_profile):
        await make_profile(phone_number="+2348012345678")
        response = await client.post("/api/v1/auth/check-phone", json={"phone_number": "08012345678"})
        assert response.json() == {"exists": True}

    async def test_signup_rechecks_after_stale_advisory_check(self, client: AsyncClient, mock_email_service, make_profile):
        check = await client.post("/api/v1/auth/check-email", json={"email": "ada@example.com"})
        assert check.json() == {"exists": False}

        # Someone else signs up between the advisory check and the commit
        await make_profile(email="ada@example.com")

        response = await client.post("/api/v1/auth/register/email", json=_signup())
        assert response.status_code == 409
        assert response.json()["detail"] == "Email already registered"

    async def test_unique_index_rejects_race_past_recheck(
        self,
        client: AsyncClient,
        mock_email_service,
        make_profile,
        monkeypatch: pytest.MonkeyPatch,
    ):
        await make_profile(email="ada@example.com")
        monkeypatch.setattr(auth_service, "email_exists", AsyncMock(return_value=False))

        response = await client.post("/api/v1/auth/register/email", json=_signup())
        assert response.status_code == 409


class TestEmailVerification:
    async def test_verify_email_then_login(self, client: AsyncClient, mock_email_service):
        await client.post("/api/v1/auth/register/email", json=_signup())

        blocked = await client.post("/api/v1/auth/login", json={"email": "ada@example.com", "password": "Secure123"})
        assert blocked.status_code == 403
        assert blocked.json()["detail"].startswith("Email not verified")

        verify_url = mock_email_service.send_template.call_args.kwargs["context"]["verify_url"]
        token = verify_url.rsplit("token=", 1)[1]
        verified = await client.post("/api/v1/auth/verify-email", json={"token": token})
        assert verified.status_code == 200

        response = await client.post("/api/v1/auth/login", json={"email": "ada@example.com", "password": "Secure123"})
        assert response.status_code == 200
        assert response.json()["user"]["email_verified"] is True

    async def test_token_single_use(self, client: AsyncClient, mock_email_service):
        await client.post("/api/v1/auth/register/email", json=_signup())
        verify_url = mock_email_service.send_template.call_args.kwargs["context"]["verify_url"]
        token = verify_url.rsplit("token=", 1)[1]
        await client.post("/api/v1/auth/verify-email", json={"token": token})
        again = await client.post("/api/v1/auth/verify-email", json={"token": token})
        assert again.status_code == 400

    async def test_unknown_token(self, client: AsyncClient):
        response = await client.post("/api/v1/auth/verify-email", json={"token": "nope"})
        assert response.status_code == 400

    async def test_resend_verification(self, client: AsyncClient, mock_email_service):
        await client.post("/api/v1/auth/register/email", json=_signup())
        response = await client.post("/api/v1/auth/resend-verification", json={"email": "ada@example.com"})
        assert response.status_code == 200
        assert response.json() == {"status": "verification_sent"}
        call = mock_email_service.send_template.call_args.kwargs
        assert call["template_name"] == "verify_email"

        token = call["context"]["verify_url"].rsplit("token=", 1)[1]
        verified = await client.post("/api/v1/auth/verify-email", json={"token": token})
        assert verified.status_code == 200

    async def test_resend_verification_unknown_email(self, client: AsyncClient, mock_email_service):
        response = await client.post("/api/v1/auth/resend-verification", json={"email": "ghost@example.com"})
        assert response.status_code == 200
        assert response.json() == {"status": "verification_sent"}
        mock_email_service.send_template.assert_not_awaited()


class TestLogin:
    async def test_login_with_email(self, client: AsyncClient, make_profile):
        profile = await make_profile(email="res@example.com")
        response = await client.post("/api/v1/auth/login", json={"email": "res@example.com", "password": "Secure123"})
        assert response.status_code == 200
        data = response.json()
        assert data["user"]["id"] == profile.id
        assert data["user"]["last_sign_in_at"] is not None
        assert data["token_type"] == "bearer"

    async def test_login_with_phone(self, client: AsyncClient, make_profile):
        await make_profile(phone_number="+2348011112222")
        response = await client.post(
            "/api/v1/auth/login", json={"phone_number": "0801 111 2222", "password": "Secure123"}
        )
        assert response.status_code == 200

    async def test_wrong_password(self, client: AsyncClient, make_profile):
        await make_profile(email="res@example.com")
        response = await client.post("/api/v1/auth/login", json={"identifier": "res@example.com", "password": "Nope12345"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid login credentials"

    async def test_unknown_account(self, client: AsyncClient, database):
        response = await client.post("/api/v1/auth/login", json={"identifier": "ghost@example.com", "password": "x1"})
        assert response.status_code == 401

    async def test_deactivated_account(self, client: AsyncClient, make_profile):
        await make_profile(email="gone@example.com", is_active=False)
        response = await client.post("/api/v1/auth/login", json={"email": "gone@example.com", "password": "Secure123"})
        assert response.status_code == 403
        assert response.json()["detail"] == "Account is deactivated"

    async def test_lockout_after_repeated_failures(self, client: AsyncClient, make_profile):
        await make_profile(email="res@example.com")
        for i in range(10):
            await client.post("/api/v1/auth/login", json={"email": "res@example.com", "password": f"Wrong{i}abc"})

        response = await client.post("/api/v1/auth/login", json={"email": "res@example.com", "password": "Secure123"})
        assert response.status_code == 429
        assert "locked" in response.json()["detail"].lower()
