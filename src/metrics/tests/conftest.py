"""Shared fixtures and fakes for metrics cache tests."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from src.metrics.base import DataSourceSettings, RemoteClient
from src.metrics.cache.backends import InMemoryCacheBackend
from src.metrics.cache.gaps import DateRange
from src.metrics.cache.registry import RecordRegistry, default_registry
from src.metrics.cache.store import CacheStore
from src.metrics.config_loader import SyncConfig, load_sync_config
from src.metrics.errors import NetworkError
from src.metrics.records import TypeQuickerStats

T0 = datetime(2025, 1, 5, 8, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(hours=1)
TODAY = date(2025, 1, 10)


def tq(day: date, wpm: float, minutes: int = 10) -> TypeQuickerStats:
    """Minimal TypeQuickerStats for a day."""
    return TypeQuickerStats(
        day=day,
        words_per_minute=wpm,
        accuracy=97.0,
        practice_time_minutes=minutes,
        sessions_count=1,
    )


class FixedClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeTypingRemote(RemoteClient):
    """In-memory RemoteClient serving TypeQuickerStats from a dict.

    ``calls`` records every requested range; days listed in ``fail_days``
    make any range containing them raise NetworkError.
    """

    SOURCE_ID = "typequicker"
    DISPLAY_NAME = "Fake TypeQuicker"
    RECORD_TYPE = TypeQuickerStats
    REQUIRED_CREDENTIALS = ("username",)

    def __init__(self, data: dict[date, float] | None = None, configured: bool = True) -> None:
        super().__init__()
        self.data = dict(data or {})
        self.fail_days: set[date] = set()
        self.calls: list[DateRange] = []
        self.latest_calls = 0
        if configured:
            self.configure(
                DataSourceSettings(provider="typequicker", credentials={"username": "alice"})
            )

    async def fetch(self, date_range: DateRange) -> list[TypeQuickerStats]:
        self._require_settings()
        self.calls.append(date_range)
        if any(d in date_range for d in self.fail_days):
            raise NetworkError(f"boom for {date_range}", status_code=503)
        return [tq(d, wpm) for d, wpm in sorted(self.data.items()) if d in date_range]

    async def fetch_latest(self, today: date | None = None) -> TypeQuickerStats | None:
        self.latest_calls += 1
        self._require_settings()
        if not self.data:
            return None
        day = max(self.data)
        return tq(day, self.data[day])


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def registry() -> RecordRegistry:
    return default_registry()


@pytest.fixture
def backend() -> InMemoryCacheBackend:
    return InMemoryCacheBackend()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(backend: InMemoryCacheBackend, registry: RecordRegistry, clock: FixedClock) -> CacheStore:
    return CacheStore(backend, registry, clock=clock)


@pytest.fixture
def remote() -> FakeTypingRemote:
    return FakeTypingRemote()


@pytest.fixture
def sync_config() -> SyncConfig:
    """The bundled sync_config.yaml."""
    return load_sync_config()
