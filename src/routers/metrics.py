"""Sync, cache-read, task-timer and retention endpoints for the metrics layer."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from src.dependencies import Orchestrator, Retention, Store
from src.metrics.base import CacheableRecord
from src.metrics.cache.registry import RecordAdapter
from src.metrics.cache.wrapper import CachingClient
from src.metrics.clients.tasks import TaskTimerClient
from src.metrics.errors import (
    ConfigurationError,
    NetworkError,
    PersistenceError,
    UnsupportedRecordType,
)
from src.models.base import ErrorDetail
from src.models.sync import (
    LatestValueRead,
    ProviderRead,
    RecordRangeRead,
    RecordRead,
    RetentionRead,
    SyncReportRead,
    SyncRequest,
    TaskSessionCreate,
    TaskSessionRead,
)

router = APIRouter(tags=["metrics"])
logger = logging.getLogger("goalsync.api.metrics")

_ERRORS = {404: {"model": ErrorDetail}, 500: {"model": ErrorDetail}}


def _provider_or_404(orchestrator, source_id: str) -> CachingClient:
    try:
        return orchestrator.provider(source_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown provider '{source_id}'")


def _to_read(adapter: RecordAdapter, record: CacheableRecord) -> RecordRead:
    return RecordRead(
        cache_key=record.cache_key,
        record_date=record.record_date,
        data=adapter.encode(record),
    )


def _check_range(start: date | None, end: date | None) -> None:
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")


# ---------- Sync ----------


@router.post("/sync", response_model=SyncReportRead)
async def run_sync(orchestrator: Orchestrator, body: SyncRequest | None = None) -> Any:
    """Sync every configured provider over its trailing window."""
    report = await orchestrator.run(window_days=body.window_days if body else None)
    return report.to_dict()


@router.get("/sync/last", response_model=SyncReportRead)
async def last_sync(orchestrator: Orchestrator) -> Any:
    if orchestrator.last_report is None:
        raise HTTPException(status_code=404, detail="No sync has run yet")
    return orchestrator.last_report.to_dict()


# ---------- Providers ----------


@router.get("/providers", response_model=list[ProviderRead])
async def list_providers(orchestrator: Orchestrator) -> Any:
    states = orchestrator.states()
    return [
        ProviderRead(
            source_id=sid,
            display_name=p.remote.DISPLAY_NAME,
            record_kind=p.record_type.kind(),
            configured=p.is_configured(),
            state=states[sid].value,
            metrics=[
                {"key": m.key, "name": m.name, "unit": m.unit}
                for m in p.remote.available_metrics()
            ],
        )
        for sid, p in sorted(orchestrator.providers.items())
    ]


@router.get(
    "/providers/{source_id}/range", response_model=RecordRangeRead, responses=_ERRORS
)
async def fetch_provider_range(
    source_id: str,
    orchestrator: Orchestrator,
    store: Store,
    start: date = Query(...),
    end: date = Query(...),
) -> Any:
    """Cache-first range read: only missing days are fetched from the provider."""
    _check_range(start, end)
    provider = _provider_or_404(orchestrator, source_id)
    try:
        result = await provider.fetch_range(start, end)
    except PersistenceError as exc:
        logger.error("Range read for %s failed: %s", source_id, exc)
        raise HTTPException(status_code=500, detail=str(exc))

    adapter = store.registry.adapter_for(provider.record_type)
    return RecordRangeRead(
        kind=adapter.kind,
        start=start,
        end=end,
        count=len(result.records),
        offline=result.offline,
        fetched_ranges=[str(r) for r in result.fetched_ranges],
        failures=[str(f) for f in result.failures],
        records=[_to_read(adapter, r) for r in result.records],
    )


@router.get(
    "/providers/{source_id}/latest/{metric}",
    response_model=LatestValueRead,
    responses={404: {"model": ErrorDetail}, 409: {"model": ErrorDetail}, 502: {"model": ErrorDetail}},
)
async def latest_metric_value(source_id: str, metric: str, orchestrator: Orchestrator) -> Any:
    """Fresh value straight from the provider (cached on success)."""
    provider = _provider_or_404(orchestrator, source_id)
    known = {m.key for m in provider.remote.available_metrics()}
    if metric not in known:
        raise HTTPException(
            status_code=404, detail=f"Unknown metric '{metric}' for {source_id}"
        )
    try:
        value = await provider.fetch_latest_metric_value(metric)
    except ConfigurationError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except NetworkError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return LatestValueRead(source_id=source_id, metric=metric, value=value)


# ---------- Task timer ----------


@router.post(
    "/tasks/sessions",
    response_model=TaskSessionRead,
    status_code=201,
    responses={400: {"model": ErrorDetail}, 404: {"model": ErrorDetail}},
)
async def record_task_session(body: TaskSessionCreate, orchestrator: Orchestrator) -> Any:
    """Record a finished task-timer session.  It reaches the cache on the next read or sync."""
    provider = _provider_or_404(orchestrator, TaskTimerClient.SOURCE_ID)
    try:
        session = provider.remote.record_session(
            body.task_id, body.task_name, body.start, body.end
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return TaskSessionRead(
        task_id=session.task_id,
        task_name=session.task_name,
        start=session.start,
        end=session.end,
        duration_minutes=session.duration_minutes,
    )


# ---------- Cache ----------


@router.get(
    "/records/{provider}/{record_type}", response_model=RecordRangeRead, responses=_ERRORS
)
async def list_cached_records(
    provider: str,
    record_type: str,
    store: Store,
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
) -> Any:
    """Cache-only read; never touches the network."""
    _check_range(start, end)
    try:
        adapter = store.registry.adapter_for(f"{provider}:{record_type}")
    except UnsupportedRecordType as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    try:
        records = await store.fetch(adapter.kind, start, end)
    except PersistenceError as exc:
        logger.error("Cache read for %s failed: %s", adapter.kind, exc)
        raise HTTPException(status_code=500, detail=str(exc))
    return RecordRangeRead(
        kind=adapter.kind,
        start=start,
        end=end,
        count=len(records),
        records=[_to_read(adapter, r) for r in records],
    )


@router.post("/retention", response_model=RetentionRead)
async def run_retention(retention: Retention) -> Any:
    """Delete cache entries older than each provider's retention window."""
    try:
        removed = await retention.sweep()
    except PersistenceError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return RetentionRead(removed=removed, total=sum(removed.values()))
