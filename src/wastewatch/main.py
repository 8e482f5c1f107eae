"""FastAPI application factory."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from wastewatch.analytics.router import router as analytics_router
from wastewatch.auth.router import router as auth_router
from wastewatch.config import get_settings
from wastewatch.database import close_db, init_db
from wastewatch.health.router import router as health_router
from wastewatch.middleware import setup_middleware
from wastewatch.notifications.router import router as notifications_router
from wastewatch.redis_client import close_redis, init_redis
from wastewatch.reports.router import router as reports_router
from wastewatch.schedules.router import router as schedules_router
from wastewatch.spa import setup_spa
from wastewatch.users.router import router as users_router
from wastewatch.ws.bridge import PubSubBridge
from wastewatch.ws.router import router as ws_router


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    redis = await init_redis(settings.redis_url, settings.redis_max_connections)

    # Redis pub/sub -> WebSocket bridge
    bridge = PubSubBridge(redis)
    bridge_task = asyncio.create_task(bridge.start())

    yield

    await bridge.stop()
    bridge_task.cancel()
    try:
        await bridge_task
    except asyncio.CancelledError:
        pass

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Enugu Waste Watch API",
        description="Waste reports, pickup schedules and notifications for Enugu residents and officials",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(reports_router)
    app.include_router(schedules_router)
    app.include_router(notifications_router)
    app.include_router(analytics_router)
    app.include_router(ws_router)
    if settings.serve_static:
        setup_spa(app, settings)

    return app


app = create_app()
