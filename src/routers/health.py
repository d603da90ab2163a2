"""Health check endpoint."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.dependencies import AppSettings

router = APIRouter(tags=["system"])
logger = logging.getLogger("goalsync.health")


@router.get("/health")
async def health_check(request: Request, settings: AppSettings) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also counts one cache table as a lightweight backend check.
    """
    store = getattr(request.app.state, "store", None)
    backend_ok = False
    if store is not None:
        try:
            await store.count("tasks:daily")
            backend_ok = True
        except Exception as exc:
            logger.warning("Health check backend probe failed: %s", exc)

    return {
        "status": "healthy" if backend_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "backend": store.backend.NAME if store is not None else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
