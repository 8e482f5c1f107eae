"""Shared Redis client.

One client serves rate limiting, login lockout, OTP codes, reminder sentinels,
the analytics cache and pub/sub fan-out to WebSocket subscribers.
"""

import redis.asyncio as redis

_client: redis.Redis | None = None


async def init_redis(url: str, max_connections: int = 50) -> redis.Redis:
    """Create the shared client from a URL and return it."""
    client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )
    use_redis(client)
    return client


def use_redis(client: redis.Redis | None) -> None:
    """Install an already-built client (arq worker context, in-process test server)."""
    global _client  # noqa: PLW0603
    _client = client


async def close_redis() -> None:
    """Close and forget the shared client."""
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis:
    """Return the shared client (FastAPI dependency)."""
    if _client is None:
        msg = "Redis not initialized. Call init_redis() first."
        raise RuntimeError(msg)
    return _client
