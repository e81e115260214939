from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .routers import health, sessions
from .cron.prewarm import start_prewarmer


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="Session & Tilt Analytics", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sessions.router, prefix="/api/session-insights", tags=["sessions"])
    app.include_router(health.router, prefix="/api", tags=["health"])

    # Background pre-warm of stale aggregates; insights stay correct without it
    if os.getenv("TILTWATCH_PREWARM", "1") != "0":
        try:
            start_prewarmer()
        except RuntimeError:
            logger.warning("prewarm thread could not be started")

    # Global error handler → uniform envelope
    @app.exception_handler(Exception)
    async def on_error(request: Request, exc: Exception):
        logger.exception("unhandled error on %s", request.url.path)
        return JSONResponse({"ok": False, "error": {"code": "INTERNAL", "message": str(exc)}}, status_code=500, headers={"Cache-Control": "no-store"})

    # Add Cache-Control no-store for API responses
    @app.middleware("http")
    async def no_store_middleware(request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"
        return response

    return app


app = create_app()
