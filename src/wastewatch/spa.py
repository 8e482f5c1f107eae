"""Serve the prebuilt single-page frontend.

Unmatched non-API paths get the file they name, or ``index.html`` so the
client-side router can take over. Without a build the server answers plain
``Not Found``.
"""

from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse, PlainTextResponse, Response
from fastapi.staticfiles import StaticFiles

from wastewatch.config import Settings

API_PREFIXES = ("api/", "ws/", "docs", "redoc", "openapi.json")


def is_api_path(path: str) -> bool:
    """Paths the SPA must never answer: API routes, the socket endpoint and the API docs."""
    return path == "ws" or path.startswith(API_PREFIXES)


def resolve_static_path(root: Path, request_path: str) -> Path | None:
    """The file under ``root`` a request names, or None (missing, a directory, or outside root)."""
    if not request_path:
        return None
    root = root.resolve()
    candidate = (root / request_path).resolve()
    if not candidate.is_relative_to(root) or not candidate.is_file():
        return None
    return candidate


def setup_spa(app: FastAPI, settings: Settings) -> None:
    """Register the catch-all route. Must run after every API router is included."""
    root = Path(settings.static_dir)
    assets = root / "assets"
    if assets.is_dir():
        app.mount("/assets", StaticFiles(directory=assets), name="assets")

    @app.get("/{full_path:path}", include_in_schema=False)
    async def spa_fallback(full_path: str) -> Response:
        if is_api_path(full_path):
            raise HTTPException(status_code=404, detail="Not Found")
        index = root / "index.html"
        if not index.is_file():
            return PlainTextResponse("Not Found", status_code=404)
        static_file = resolve_static_path(root, full_path)
        return FileResponse(static_file or index)
