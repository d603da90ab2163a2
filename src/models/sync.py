"""Request / response schemas for the sync and cache endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import AwareDatetime, Field

from src.models.base import GoalSyncBase


# ---------- Sync ----------


class SyncRequest(GoalSyncBase):
    window_days: int | None = Field(default=None, ge=1, le=3650)


class ProviderOutcomeRead(GoalSyncBase):
    source_id: str
    state: str
    window: str | None = None
    records: int = 0
    fetched_ranges: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None
    finished_at: datetime


class SyncReportRead(GoalSyncBase):
    started_at: datetime
    finished_at: datetime | None = None
    synced: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    outcomes: dict[str, ProviderOutcomeRead] = Field(default_factory=dict)


# ---------- Providers ----------


class MetricRead(GoalSyncBase):
    key: str
    name: str
    unit: str = ""


class ProviderRead(GoalSyncBase):
    source_id: str
    display_name: str
    record_kind: str
    configured: bool
    state: str
    metrics: list[MetricRead] = Field(default_factory=list)


# ---------- Records ----------


class RecordRead(GoalSyncBase):
    cache_key: str
    record_date: date
    data: dict[str, Any]


class RecordRangeRead(GoalSyncBase):
    kind: str
    start: date | None = None
    end: date | None = None
    count: int
    offline: bool = False
    fetched_ranges: list[str] = Field(default_factory=list)
    failures: list[str] = Field(default_factory=list)
    records: list[RecordRead] = Field(default_factory=list)


class LatestValueRead(GoalSyncBase):
    source_id: str
    metric: str
    value: float | None = None


# ---------- Task timer ----------


class TaskSessionCreate(GoalSyncBase):
    task_id: str = Field(min_length=1)
    task_name: str = Field(min_length=1)
    start: AwareDatetime
    end: AwareDatetime


class TaskSessionRead(GoalSyncBase):
    task_id: str
    task_name: str
    start: datetime
    end: datetime
    duration_minutes: float


# ---------- Retention ----------


class RetentionRead(GoalSyncBase):
    removed: dict[str, int] = Field(default_factory=dict)
    total: int = 0
