"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from coachsync.dependencies import AppSettings, Orchestrator
from coachsync.services.database import get_pool

router = APIRouter(tags=["system"])
logger = logging.getLogger("coachsync.health")


@router.get("/health")
async def health_check(settings: AppSettings, orchestrator: Orchestrator) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also performs a lightweight DB connectivity check when the Postgres
    store backend is in use.
    """
    db_ok = False
    if settings.store_backend == "postgres":
        try:
            pool = get_pool()
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            db_ok = True
        except Exception as exc:
            logger.warning("Health check DB probe failed: %s", exc)
        database = "connected" if db_ok else "unreachable"
    else:
        db_ok = True
        database = "in-memory"

    return {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": database,
        "reconciliation_config_version": orchestrator.config.version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
