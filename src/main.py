"""GoalSync API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import get_settings
from src.metrics.cache.backends import CacheBackend, InMemoryCacheBackend
from src.metrics.cache.postgres_backend import PostgresCacheBackend
from src.metrics.cache.registry import default_registry
from src.metrics.cache.store import CacheStore
from src.metrics.clients import build_caching_clients
from src.metrics.config_loader import get_sync_config
from src.metrics.sync.orchestrator import SyncOrchestrator
from src.metrics.sync.retention import RetentionSweeper
from src.routers import health, metrics
from src.services.postgres import close_pool, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("goalsync")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())
    logger.info(
        "Starting GoalSync API v%s [%s]",
        settings.app_version,
        settings.environment,
    )

    backend: CacheBackend
    if settings.database_url:
        backend = PostgresCacheBackend(await init_pool(settings))
    else:
        logger.info("DATABASE_URL not set, using in-memory cache backend")
        backend = InMemoryCacheBackend()

    config = get_sync_config()
    store = CacheStore(backend, default_registry())
    providers = build_caching_clients(store, config)
    orchestrator = SyncOrchestrator(providers, config=config)
    orchestrator.configure_from_settings(settings)

    app.state.store = store
    app.state.orchestrator = orchestrator
    app.state.retention = RetentionSweeper(store, providers, config)

    if settings.sync_on_startup:
        await orchestrator.run(window_days=settings.sync_window_days)

    yield

    await backend.close()
    if settings.database_url:
        await close_pool()
    logger.info("GoalSync API shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="GoalSync API",
        description=(
            "Incremental metric cache and sync service: typing practice, "
            "competitive programming, flashcards, and task timers behind one store."
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

    # ---------- Health check (outside v1 prefix — always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    app.include_router(metrics.router, prefix="/api/v1")

    return app


app = create_app()
