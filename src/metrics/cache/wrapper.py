"""Caching wrapper around a provider's RemoteClient.

CachingClient answers range queries from the cache store and only asks the
remote for the days the cache is missing:

1. Read the cached records and coverage ledger for the requested range.
2. Compute the missing sub-ranges with ``missing_ranges``.
3. Fetch each missing sub-range from the remote and store the results.
4. Re-read the full range from the cache and return it.

Step 4 makes the cache the single source of truth: callers always receive
exactly what a direct cache read of the same range would return.

A sub-range whose fetch fails (network error, timeout, lost configuration)
stays missing and is reported in ``FetchResult.failures``; the rest of the
query still succeeds.  When the remote is not configured at all, the wrapper
serves the cache alone and flags the result as offline.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable

from src.metrics.base import CacheableRecord, DataSourceSettings, RemoteClient, utc_now
from src.metrics.cache.gaps import DateRange, missing_ranges, to_record_date
from src.metrics.cache.store import CacheStore
from src.metrics.errors import ConfigurationError, NetworkError, PersistenceError

logger = logging.getLogger("goalsync.metrics.cache.wrapper")


def fetch_key(source_id: str, kind: str, date_range: DateRange) -> str:
    """De-duplication key for one remote sub-range fetch."""
    return f"{source_id}:{kind}:{date_range.start.isoformat()}:{date_range.end.isoformat()}"


@dataclass
class SubRangeFailure:
    """A missing sub-range that could not be fetched.

    Attributes:
        date_range: The sub-range that stays missing.
        error:      Human-readable cause.
        error_type: Exception class name ('NetworkError', 'TimeoutError', ...).
    """

    date_range: DateRange
    error: str
    error_type: str

    def __str__(self) -> str:
        return f"{self.date_range}: {self.error_type}: {self.error}"


@dataclass
class FetchResult:
    """Result of CachingClient.fetch_range().

    Attributes:
        records:        Cached records for the requested range, oldest first.
        fetched_ranges: Sub-ranges successfully fetched from the remote.
        failures:       Sub-ranges that could not be fetched.
        offline:        True when the remote was not configured and only the
                        cache was consulted.
    """

    records: list[CacheableRecord]
    fetched_ranges: list[DateRange] = field(default_factory=list)
    failures: list[SubRangeFailure] = field(default_factory=list)
    offline: bool = False

    @property
    def partial(self) -> bool:
        return bool(self.failures)


class CachingClient:
    """Cache-first decorator over one RemoteClient instance.

    Args:
        remote:        The provider client.  Owned exclusively by this wrapper.
        store:         Shared cache store.
        volatile_days: Trailing days (ending today) that are always re-fetched
                       because the provider may still add data to them.  Days
                       last fetched while inside that window are re-fetched
                       once more after it has moved on.
        fetch_timeout: Seconds allowed for one remote sub-range fetch.
        clock:         Returns the current aware datetime; used for
                       ``fetched_at`` stamps and the volatile window.
    """

    def __init__(
        self,
        remote: RemoteClient,
        store: CacheStore,
        *,
        volatile_days: int = 0,
        fetch_timeout: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if volatile_days < 0:
            raise ValueError(f"volatile_days must be >= 0, got {volatile_days}")
        self.remote = remote
        self.store = store
        self.record_type = remote.RECORD_TYPE
        self.volatile_days = volatile_days
        self.fetch_timeout = fetch_timeout
        self._clock = clock or utc_now
        self._inflight: dict[str, asyncio.Future] = {}

    def __repr__(self) -> str:
        return f"CachingClient({self.source_id!r}, kind={self.record_type.kind()!r})"

    @property
    def source_id(self) -> str:
        return self.remote.SOURCE_ID

    # ------------------------------------------------------------------
    # Configuration passthrough
    # ------------------------------------------------------------------

    def is_configured(self) -> bool:
        return self.remote.is_configured()

    def configure(self, settings: DataSourceSettings) -> None:
        self.remote.configure(settings)

    def clear_configuration(self) -> None:
        self.remote.clear_configuration()

    # ------------------------------------------------------------------
    # Range queries
    # ------------------------------------------------------------------

    async def fetch_range(
        self, start: date | datetime, end: date | datetime
    ) -> FetchResult:
        """Serve [start, end] from the cache, fetching only the missing days.

        Raises:
            PersistenceError: If the cache store itself fails.
        """
        first, last = to_record_date(start), to_record_date(end)

        if not self.remote.is_configured():
            logger.debug("%s not configured, serving %s..%s from cache", self.source_id, first, last)
            return FetchResult(records=await self.cached(first, last), offline=True)

        cached = await self.store.fetch(self.record_type, first, last)
        ledger = await self.store.coverage(self.record_type, first, last)
        covered = {r.record_date for r in cached} | set(ledger)
        covered -= self._volatile_dates(ledger)

        gaps = missing_ranges(first, last, covered)
        result = FetchResult(records=[])
        if not gaps:
            logger.debug("%s: %s..%s fully cached", self.source_id, first, last)

        for gap in gaps:
            try:
                records = await self._fetch_once(gap)
            except (NetworkError, ConfigurationError, asyncio.TimeoutError) as exc:
                failure = SubRangeFailure(gap, str(exc) or "timed out", type(exc).__name__)
                logger.warning("%s: fetch of %s failed: %s", self.source_id, gap, failure.error)
                result.failures.append(failure)
                continue

            fetched_at = self._clock()
            await self.store.store(records, fetched_at=fetched_at)
            await self.store.mark_covered(self.record_type, gap.start, gap.end, fetched_at)
            result.fetched_ranges.append(gap)
            logger.info(
                "%s: fetched %d record(s) for %s", self.source_id, len(records), gap
            )

        result.records = await self.store.fetch(self.record_type, first, last)
        return result

    async def cached(
        self,
        start: date | datetime | None = None,
        end: date | datetime | None = None,
    ) -> list[CacheableRecord]:
        """Cache-only read; never touches the network."""
        return await self.store.fetch(self.record_type, start, end)

    async def has_cached_data(self) -> bool:
        return await self.store.has_cached_data(self.record_type)

    def _volatile_dates(self, ledger: dict[date, datetime]) -> set[date]:
        """Covered days that must be fetched again.

        That is the trailing window ending today, plus every day whose last
        fetch happened no more than ``volatile_days`` after the day itself.
        A day fetched while it was still open is therefore refreshed on the
        next query even when the clock has since moved past the window.
        """
        if not self.volatile_days:
            return set()
        today = to_record_date(self._clock())
        window = {today - timedelta(days=i) for i in range(self.volatile_days)}
        unsettled = {
            day for day, fetched_at in ledger.items()
            if (to_record_date(fetched_at) - day).days <= self.volatile_days
        }
        return window | unsettled

    async def _fetch_once(self, gap: DateRange) -> list[CacheableRecord]:
        """Fetch one sub-range, sharing the call with identical concurrent requests."""
        key = fetch_key(self.source_id, self.record_type.kind(), gap)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_remote(gap))
            self._inflight[key] = task

            def _forget(done: asyncio.Future, key: str = key) -> None:
                if self._inflight.get(key) is done:
                    del self._inflight[key]
                if not done.cancelled():
                    done.exception()

            task.add_done_callback(_forget)
        else:
            logger.debug("%s: joining in-flight fetch %s", self.source_id, key)
        return await asyncio.shield(task)

    async def _fetch_remote(self, gap: DateRange) -> list[CacheableRecord]:
        if self.fetch_timeout is None:
            return await self.remote.fetch(gap)
        return await asyncio.wait_for(self.remote.fetch(gap), self.fetch_timeout)

    # ------------------------------------------------------------------
    # Latest-value fast path
    # ------------------------------------------------------------------

    async def fetch_latest_metric_value(self, key: str) -> float | None:
        """Ask the remote for its newest record and return one metric from it.

        The record is cached when possible, but a cache failure never hides
        the fresh value.

        Raises:
            ConfigurationError: If the remote is not configured.
            NetworkError:       If the remote request fails.
        """
        if not self.remote.is_configured():
            raise ConfigurationError(f"{self.remote.DISPLAY_NAME} is not configured")

        record = await self.remote.fetch_latest()
        if record is None:
            return None
        try:
            await self.store.store([record], fetched_at=self._clock())
        except PersistenceError as exc:
            logger.warning("%s: could not cache latest record: %s", self.source_id, exc)
        return self.remote.metric_value(key, record)

    async def latest_cached_value(self, key: str) -> float | None:
        """Metric from the newest cached record, without any network call."""
        latest = await self.store.latest_record_date(self.record_type)
        if latest is None:
            return None
        records = await self.store.fetch(self.record_type, latest, latest)
        if not records:
            return None
        return self.remote.metric_value(key, records[-1])
