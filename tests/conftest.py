"""Shared test fixtures.

Each test gets a fresh SQLite file database and an in-process fakeredis
client; the schema is built straight from the ORM metadata.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable, Iterator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import fakeredis.aioredis
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from wastewatch.auth.jwt import create_access_token, reset_keys
from wastewatch.auth.password import hash_password
from wastewatch.config import get_settings
from wastewatch.database import close_db, get_engine, get_session_factory, init_db
from wastewatch.db.base import Base
from wastewatch.db.models import Profile
from wastewatch.email.service import reset_email_service
from wastewatch.main import create_app
from wastewatch.redis_client import use_redis
from wastewatch.sms.service import reset_sms_service

STAFF_CODE = "ENUGU-STAFF-2024"
TEST_PASSWORD = "Secure123"


@pytest.fixture(autouse=True)
def _test_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("WW_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("WW_JWT_SECRET_KEY", "test-secret-key-with-at-least-32-bytes!!")
    monkeypatch.setenv("WW_STAFF_SIGNUP_CODE", STAFF_CODE)
    monkeypatch.setenv("WW_STATIC_DIR", str(tmp_path / "dist"))
    monkeypatch.setenv("WW_RATE_LIMIT_REQUESTS", "10000")
    monkeypatch.setenv("WW_LOG_FORMAT", "console")
    get_settings.cache_clear()
    reset_keys()
    reset_email_service()
    reset_sms_service()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[fakeredis.aioredis.FakeRedis, None]:
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    use_redis(client)
    yield client
    use_redis(None)
    await client.aclose()


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    await init_db(get_settings().database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database: None) -> AsyncGenerator[AsyncSession, None]:
    """A direct session for arranging data and asserting on it."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def client(database: None, redis_client: fakeredis.aioredis.FakeRedis) -> AsyncGenerator[AsyncClient, None]:
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def mock_email_service(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    service = MagicMock()
    service.send_template = AsyncMock(return_value=True)
    service.send_email = AsyncMock(return_value=True)
    monkeypatch.setattr("wastewatch.auth.router.get_email_service", lambda *a, **kw: service)
    monkeypatch.setattr("wastewatch.users.router.get_email_service", lambda *a, **kw: service)
    return service


@pytest.fixture
def mock_sms_service(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    """SMS double; the last code sent is in ``sent_codes[phone]``."""
    service = MagicMock()
    service.sent_codes = {}

    async def _send(to: str, code: str) -> bool:
        service.sent_codes[to] = code
        return True

    service.send_verification_code = AsyncMock(side_effect=_send)
    monkeypatch.setattr("wastewatch.auth.router.get_sms_service", lambda *a, **kw: service)
    return service


ProfileFactory = Callable[..., Awaitable[Profile]]


@pytest_asyncio.fixture
async def make_profile(db_session: AsyncSession) -> ProfileFactory:
    """Insert a verified profile directly."""
    counter = 0

    async def _make(
        role: str = "resident",
        area: str | None = None,
        name: str | None = None,
        email: str | None = None,
        **fields: object,
    ) -> Profile:
        nonlocal counter
        counter += 1
        values: dict[str, object] = {
            "name": name or f"{role.title()} {counter}",
            "email": email or f"{role}{counter}@example.com",
            "password_hash": hash_password(TEST_PASSWORD),
            "role": role,
            "area": area if area is not None or role != "resident" else "Independence Layout",
            "email_verified": True,
        }
        values.update(fields)
        profile = Profile(**values)
        db_session.add(profile)
        await db_session.commit()
        return profile

    return _make


@pytest.fixture
def auth_headers() -> Callable[[Profile], dict[str, str]]:
    """Bearer headers for a profile, signed with the test secret."""

    def _headers(profile: Profile) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(profile.id, profile.role)}"}

    return _headers
