"""CoachSync API — FastAPI application entry point.

Run locally:
    uvicorn coachsync.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coachsync.config import get_settings
from coachsync.reconciliation.postgres import ensure_schema
from coachsync.routers import health, reconciliation
from coachsync.services.database import close_pool, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("coachsync")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the DB pool and ensure the schema when running on Postgres."""
    settings = get_settings()
    logger.info(
        "Starting CoachSync API v%s [%s, %s stores]",
        settings.app_version,
        settings.environment,
        settings.store_backend,
    )
    if settings.store_backend == "postgres":
        await init_pool(settings)
        await ensure_schema()
    yield
    await close_pool()
    logger.info("CoachSync API shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="CoachSync API",
        description=(
            "Multi-platform training data reconciliation — duplicate and overlap "
            "detection, precedence-based resolution, and manual review."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside the v1 prefix, always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    app.include_router(reconciliation.router, prefix="/api/v1")

    return app


app = create_app()
