"""
FastAPI application wiring.

Creates the app, applies CORS and mounts the REST and WebSocket routers. The
map logic itself lives in `ridemap.mapping`, `ridemap.routing` and `ridemap.sync`.

Run locally with: `uvicorn ridemap.api.app:app --reload`
"""

from __future__ import annotations

import os
from typing import Any

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from ridemap.core.logging import configure_logging

from .map_socket import router as map_socket_router
from .routes import router

_LOCALHOST_ORIGINS = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"


def _cors_options() -> dict[str, Any] | None:
    """CORS options from the environment, or None to skip the middleware.

    - `RIDEMAP_CORS_ORIGINS`: comma-separated explicit origins
    - `RIDEMAP_CORS_ALLOW_ORIGIN_REGEX`: origin regex
    - `RIDEMAP_CORS_ALLOW_LOCAL=0`: drop the localhost default (used when nothing else is set)
    """
    origins = [s.strip() for s in os.getenv("RIDEMAP_CORS_ORIGINS", "").split(",") if s.strip()]
    regex = os.getenv("RIDEMAP_CORS_ALLOW_ORIGIN_REGEX", "").strip()
    allow_local = os.getenv("RIDEMAP_CORS_ALLOW_LOCAL", "1").strip().lower() in {"1", "true", "yes", "y"}
    if not regex and not origins and allow_local:
        regex = _LOCALHOST_ORIGINS
    if not (origins or regex):
        return None
    return {
        "allow_origins": origins,
        "allow_origin_regex": regex or None,
        "allow_credentials": False,
        "allow_methods": ["*"],
        "allow_headers": ["*"],
    }


def create_app() -> FastAPI:
    configure_logging()
    application = FastAPI(title="ridemap API", version="0.1.0")
    cors = _cors_options()
    if cors is not None:
        application.add_middleware(CORSMiddleware, **cors)
    application.include_router(router)
    application.include_router(map_socket_router)
    return application


app = create_app()
