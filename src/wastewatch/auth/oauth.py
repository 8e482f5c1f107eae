"""
Third-party sign-in (Google).

Two entry points end in the same :class:`OAuthIdentity`:

- authorization-code flow: ``GET /oauth/{provider}`` hands out a URL carrying
  a Redis-backed ``state``; the callback posts back ``code`` + ``state``.
- fragment-token flow: the browser lands with ``#access_token=...`` in the
  URL fragment, parses it, and posts the token to ``/oauth/session``.
"""

from __future__ import annotations

import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx
import structlog

from wastewatch.config import get_settings

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = structlog.get_logger()


class OAuthError(ValueError):
    """The provider rejected the exchange or returned an unusable identity."""


@dataclass(frozen=True)
class OAuthIdentity:
    provider: str
    subject: str
    email: str
    name: str | None
    email_verified: bool


class GoogleProvider:
    name = "google"
    authorize_endpoint = "https://accounts.google.com/o/oauth2/v2/auth"
    token_endpoint = "https://oauth2.googleapis.com/token"
    userinfo_endpoint = "https://openidconnect.googleapis.com/v1/userinfo"

    def __init__(self, client_id: str, client_secret: str, redirect_url: str) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_url = redirect_url

    def authorize_url(self, state: str) -> str:
        query = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": self.redirect_url,
                "response_type": "code",
                "scope": "openid email profile",
                "state": state,
                "access_type": "offline",
                "prompt": "consent",
            }
        )
        return f"{self.authorize_endpoint}?{query}"

    async def exchange_code(self, client: httpx.AsyncClient, code: str) -> str:
        """Trade an authorization code for an access token."""
        response = await client.post(
            self.token_endpoint,
            data={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_url,
                "grant_type": "authorization_code",
            },
        )
        if response.status_code != 200:
            logger.warning("oauth_code_exchange_failed", provider=self.name, status=response.status_code)
            msg = "Could not complete sign-in with Google"
            raise OAuthError(msg)
        token: str | None = response.json().get("access_token")
        if not token:
            msg = "Google did not return an access token"
            raise OAuthError(msg)
        return token

    async def fetch_identity(self, client: httpx.AsyncClient, access_token: str) -> OAuthIdentity:
        response = await client.get(self.userinfo_endpoint, headers={"Authorization": f"Bearer {access_token}"})
        if response.status_code != 200:
            logger.warning("oauth_userinfo_failed", provider=self.name, status=response.status_code)
            msg = "Google session is invalid or has expired"
            raise OAuthError(msg)
        info: dict[str, Any] = response.json()
        email = info.get("email")
        if not email:
            msg = "Google account has no email address"
            raise OAuthError(msg)
        return OAuthIdentity(
            provider=self.name,
            subject=str(info.get("sub", "")),
            email=email.lower(),
            name=info.get("name"),
            email_verified=bool(info.get("email_verified", False)),
        )


@asynccontextmanager
async def _client(client: httpx.AsyncClient | None) -> AsyncIterator[httpx.AsyncClient]:
    """Use the caller's client as-is, or own a short-lived one."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=10.0) as owned:
        yield owned


def get_provider(name: str) -> GoogleProvider:
    """
    Raises:
        ValueError: unknown or unconfigured provider.
    """
    settings = get_settings()
    if name != "google":
        msg = f"Unsupported OAuth provider: {name}"
        raise ValueError(msg)
    if not settings.google_client_id:
        msg = "Google sign-in is not configured"
        raise ValueError(msg)
    return GoogleProvider(settings.google_client_id, settings.google_client_secret, settings.oauth_redirect_url)


async def create_authorization(redis: Redis, provider_name: str) -> tuple[str, str]:
    """Return ``(authorization_url, state)`` and remember the state in Redis."""
    provider = get_provider(provider_name)
    state = secrets.token_urlsafe(32)
    await redis.set(f"oauth:state:{state}", provider.name, ex=get_settings().oauth_state_ttl_seconds)
    return provider.authorize_url(state), state


async def consume_state(redis: Redis, provider_name: str, state: str) -> None:
    """Single-use state check (GETDEL).

    Raises:
        OAuthError: unknown, expired, reused or cross-provider state.
    """
    stored = await redis.getdel(f"oauth:state:{state}")
    if stored != provider_name:
        msg = "Invalid or expired OAuth state"
        raise OAuthError(msg)


async def identity_from_code(
    redis: Redis,
    provider_name: str,
    code: str,
    state: str,
    client: httpx.AsyncClient | None = None,
) -> OAuthIdentity:
    provider = get_provider(provider_name)
    await consume_state(redis, provider_name, state)
    async with _client(client) as http:
        token = await provider.exchange_code(http, code)
        return await provider.fetch_identity(http, token)


async def identity_from_token(
    provider_name: str,
    access_token: str,
    client: httpx.AsyncClient | None = None,
) -> OAuthIdentity:
    provider = get_provider(provider_name)
    async with _client(client) as http:
        return await provider.fetch_identity(http, access_token)

