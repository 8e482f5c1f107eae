"""Refresh rotation, reuse detection, logout and /me."""

from __future__ import annotations

from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wastewatch.db.models import RefreshToken


async def _login(client: AsyncClient, email: str) -> dict:
    response = await client.post("/api/v1/auth/login", json={"email": email, "password": "Secure123"})
    assert response.status_code == 200
    return response.json()


class TestRefresh:
    async def test_rotation(self, client: AsyncClient, make_profile, db_session: AsyncSession):
        await make_profile(email="res@example.com")
        tokens = await _login(client, "res@example.com")

        response = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 200
        rotated = response.json()
        assert rotated["refresh_token"] != tokens["refresh_token"]

        rows = (await db_session.execute(select(RefreshToken))).scalars().all()
        assert len(rows) == 2
        revoked = [row for row in rows if row.is_revoked]
        assert len(revoked) == 1
        assert revoked[0].replaced_by is not None

    async def test_reuse_revokes_family(self, client: AsyncClient, make_profile, db_session: AsyncSession):
        await make_profile(email="res@example.com")
        tokens = await _login(client, "res@example.com")
        rotated = (
            await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        ).json()

        reuse = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert reuse.status_code == 401

        # The legitimate successor is gone too
        after = await client.post("/api/v1/auth/refresh", json={"refresh_token": rotated["refresh_token"]})
        assert after.status_code == 401

    async def test_access_token_is_not_a_refresh_token(self, client: AsyncClient, make_profile):
        await make_profile(email="res@example.com")
        tokens = await _login(client, "res@example.com")
        response = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]})
        assert response.status_code == 401

    async def test_deactivated_profile_cannot_refresh(
        self, client: AsyncClient, make_profile, db_session: AsyncSession
    ):
        profile = await make_profile(email="res@example.com")
        tokens = await _login(client, "res@example.com")
        profile.is_active = False
        await db_session.commit()

        response = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert response.status_code == 403


class TestLogout:
    async def test_logout_revokes_refresh_token(self, client: AsyncClient, make_profile):
        await make_profile(email="res@example.com")
        tokens = await _login(client, "res@example.com")

        response = await client.post("/api/v1/auth/logout", json={"refresh_token": tokens["refresh_token"]})
        assert response.json() == {"status": "logged_out"}

        refresh = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refresh.status_code == 401

    async def test_logout_with_garbage_token(self, client: AsyncClient):
        response = await client.post("/api/v1/auth/logout", json={"refresh_token": "not-a-jwt"})
        assert response.status_code == 200


class TestMe:
    async def test_me(self, client: AsyncClient, make_profile, auth_headers):
        profile = await make_profile(role="official", name="Officer Okafor")
        response = await client.get("/api/v1/auth/me", headers=auth_headers(profile))
        assert response.status_code == 200
        data = response.json()
        assert data["id"] == profile.id
        assert data["role"] == "official"
        assert data["area"] is None

    async def test_me_requires_token(self, client: AsyncClient):
        response = await client.get("/api/v1/auth/me")
        assert response.status_code == 401

    async def test_role_comes_from_database(self, client: AsyncClient, make_profile, auth_headers, db_session):
        profile = await make_profile(role="official")
        headers = auth_headers(profile)
        profile.role = "resident"
        profile.area = "Abakpa"
        await db_session.commit()

        response = await client.get("/api/v1/auth/me", headers=headers)
        assert response.json()["role"] == "resident"

    async def test_deactivated_profile_rejected(self, client: AsyncClient, make_profile, auth_headers):
        profile = await make_profile(is_active=False)
        response = await client.get("/api/v1/auth/me", headers=auth_headers(profile))
        assert response.status_code == 403
