"""
FastAPI application entrypoint.

Run locally:  uvicorn app.main:app --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.routes import router
from app.config import settings
from app.services.runtime import CacheRuntime

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(levelname)s | %(name)s | %(message)s",
)


def create_app(runtime: CacheRuntime | None = None) -> FastAPI:
    """
    Build the application around a cache runtime.

    When no runtime is given one is built from ``settings`` at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.runtime = runtime or CacheRuntime.from_settings(settings)
        app.state.runtime.start()
        try:
            yield
        finally:
            app.state.runtime.shutdown()

    app = FastAPI(
        title="FHIR Patient Cache",
        description=(
            "Patient records against a remote FHIR R4 server, served from a "
            "local cache kept current by incremental _lastUpdated sync."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.include_router(router, prefix="/api/v1")
    return app


app = create_app()
