"""Shared FastAPI dependencies injected into route handlers.

The metrics objects are built once in the app lifespan and kept on
``app.state``; these helpers hand them to routes.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.config import Settings, get_settings
from src.metrics.cache.store import CacheStore
from src.metrics.sync.orchestrator import SyncOrchestrator
from src.metrics.sync.retention import RetentionSweeper


def _state_attr(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail="Metrics service is not initialized")
    return value


def get_store(request: Request) -> CacheStore:
    return _state_attr(request, "store")


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return _state_attr(request, "orchestrator")


def get_retention(request: Request) -> RetentionSweeper:
    return _state_attr(request, "retention")


# Annotated shortcuts for route signatures
AppSettings = Annotated[Settings, Depends(get_settings)]
Store = Annotated[CacheStore, Depends(get_store)]
Orchestrator = Annotated[SyncOrchestrator, Depends(get_orchestrator)]
Retention = Annotated[RetentionSweeper, Depends(get_retention)]
