"""Middleware registration."""

from fastapi import FastAPI

from wastewatch.config import Settings
from wastewatch.middleware.cors import setup_cors
from wastewatch.middleware.error_handler import setup_error_handlers
from wastewatch.middleware.logging import setup_logging
from wastewatch.middleware.rate_limit import RateLimitMiddleware
from wastewatch.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register logging, error handlers and HTTP middleware.

    Starlette runs middleware in reverse-add order, so CORS is added last to
    wrap 429 responses produced by the rate limiter.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
