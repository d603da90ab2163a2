"""Type-routed cache store.

CacheStore is the only shared mutable resource of the metrics layer.  Every
operation runs under one asyncio.Lock, so concurrent readers and writers
never interleave inside a single record upsert.  Records are routed to their
backend table through the RecordRegistry.

Write rule: a record with an existing cache key replaces the stored entry
only when its ``fetched_at`` is not older than the stored one.  Writing the
same record twice with the same ``fetched_at`` is therefore a no-op update.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import AsyncGenerator, Callable, Iterable, Sequence

from src.metrics.base import CacheableRecord, utc_now
from src.metrics.cache.backends import CacheBackend, StoredEntry, UpsertOutcome
from src.metrics.cache.gaps import DateRange, to_record_date
from src.metrics.cache.registry import RecordAdapter, RecordRegistry
from src.metrics.errors import PartialStoreError, PersistenceError

logger = logging.getLogger("goalsync.metrics.cache.store")

RecordType = type[CacheableRecord] | str


@dataclass
class StoreReport:
    """Outcome of one CacheStore.store() batch.

    Attributes:
        inserted:      Records written under a new cache key.
        updated:       Records that replaced an entry at least as old.
        skipped_stale: Records rejected because the stored entry is newer.
        failures:      (cache_key, error message) for records that failed.
    """

    inserted: int = 0
    updated: int = 0
    skipped_stale: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def written(self) -> int:
        return self.inserted + self.updated

    @property
    def ok(self) -> bool:
        return not self.failures

    def record(self, outcome: UpsertOutcome) -> None:
        if outcome is UpsertOutcome.INSERTED:
            self.inserted += 1
        elif outcome is UpsertOutcome.UPDATED:
            self.updated += 1
        else:
            self.skipped_stale += 1


class CacheStore:
    """Keyed, date-indexed persistence facade for every registered record kind."""

    def __init__(
        self,
        backend: CacheBackend,
        registry: RecordRegistry,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._backend = backend
        self._registry = registry
        self._clock = clock or utc_now
        self._lock = asyncio.Lock()

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    @property
    def registry(self) -> RecordRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _serialized(self, action: str) -> AsyncGenerator[None, None]:
        """Hold the store lock and surface backend failures as PersistenceError."""
        async with self._lock:
            try:
                yield
            except PersistenceError:
                raise
            except Exception as exc:
                raise PersistenceError(f"{action} failed: {exc}") from exc

    async def _adapter(self, record_type: RecordType) -> RecordAdapter:
        adapter = self._registry.adapter_for(record_type)
        await self._backend.ensure_table(adapter.table)
        return adapter

    @staticmethod
    def _decode_all(adapter: RecordAdapter, entries: Sequence[StoredEntry]) -> list:
        return [adapter.decode(e.payload) for e in entries]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def store(
        self,
        records: Iterable[CacheableRecord],
        fetched_at: datetime | None = None,
    ) -> StoreReport:
        """Upsert a batch of records.

        Each record is written atomically.  A failing record does not stop
        the rest of the batch.

        Args:
            records:    Records of any registered kind.
            fetched_at: When the values were obtained.  Defaults to now.

        Returns:
            StoreReport with per-outcome counts.

        Raises:
            PartialStoreError: After the whole batch was attempted, if any
                record could not be stored.
        """
        stamp = fetched_at or self._clock()
        report = StoreReport()

        async with self._lock:
            for record in records:
                key = getattr(record, "cache_key", repr(record))
                try:
                    adapter = await self._adapter(type(record))
                    entry = StoredEntry(
                        cache_key=record.cache_key,
                        record_date=to_record_date(record.record_date),
                        fetched_at=stamp,
                        payload=adapter.encode(record),
                    )
                    report.record(await self._backend.upsert_if_fresher(adapter.table, entry))
                except Exception as exc:
                    logger.warning("Failed to store %s: %s", key, exc)
                    report.failures.append((key, str(exc)))

        logger.debug(
            "Stored batch: inserted=%d updated=%d stale=%d failed=%d",
            report.inserted,
            report.updated,
            report.skipped_stale,
            len(report.failures),
        )
        if report.failures:
            raise PartialStoreError(report)
        return report

    async def mark_covered(
        self,
        record_type: RecordType,
        start: date | datetime,
        end: date | datetime,
        fetched_at: datetime | None = None,
    ) -> None:
        """Record that every day in [start, end] was fetched from the remote at ``fetched_at``."""
        days = list(DateRange(start, end).dates())
        stamp = fetched_at or self._clock()
        async with self._serialized("mark_covered"):
            adapter = await self._adapter(record_type)
            await self._backend.add_coverage(adapter.table, days, stamp)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch(
        self,
        record_type: RecordType,
        start: date | datetime | None = None,
        end: date | datetime | None = None,
    ) -> list:
        """Records with record_date in [start, end] (open where None), oldest first."""
        first = to_record_date(start) if start is not None else None
        last = to_record_date(end) if end is not None else None
        if first is not None and last is not None and first > last:
            return []
        async with self._serialized("fetch"):
            adapter = await self._adapter(record_type)
            entries = await self._backend.query(adapter.table, first, last)
            return self._decode_all(adapter, entries)

    async def fetch_by_key(
        self, record_type: RecordType, cache_key: str
    ) -> CacheableRecord | None:
        async with self._serialized("fetch_by_key"):
            adapter = await self._adapter(record_type)
            entry = await self._backend.get(adapter.table, cache_key)
            return adapter.decode(entry.payload) if entry else None

    async def entry(self, record_type: RecordType, cache_key: str) -> StoredEntry | None:
        """Raw stored entry including ``fetched_at``."""
        async with self._serialized("entry"):
            adapter = await self._adapter(record_type)
            return await self._backend.get(adapter.table, cache_key)

    async def latest_record_date(self, record_type: RecordType) -> date | None:
        async with self._serialized("latest_record_date"):
            adapter = await self._adapter(record_type)
            _, latest = await self._backend.bounds(adapter.table)
            return latest

    async def earliest_record_date(self, record_type: RecordType) -> date | None:
        async with self._serialized("earliest_record_date"):
            adapter = await self._adapter(record_type)
            earliest, _ = await self._backend.bounds(adapter.table)
            return earliest

    async def has_cached_data(self, record_type: RecordType) -> bool:
        return await self.count(record_type) > 0

    async def count(self, record_type: RecordType) -> int:
        async with self._serialized("count"):
            adapter = await self._adapter(record_type)
            return await self._backend.count(adapter.table)

    async def coverage(
        self, record_type: RecordType, start: date | datetime, end: date | datetime
    ) -> dict[date, datetime]:
        """Days in [start, end] recorded as already fetched, with their last fetch time."""
        first, last = to_record_date(start), to_record_date(end)
        if first > last:
            return {}
        async with self._serialized("coverage"):
            adapter = await self._adapter(record_type)
            return await self._backend.coverage(adapter.table, first, last)

    async def covered_dates(
        self, record_type: RecordType, start: date | datetime, end: date | datetime
    ) -> set[date]:
        """Days in [start, end] recorded as already fetched."""
        return set(await self.coverage(record_type, start, end))

    # ------------------------------------------------------------------
    # Deletes
    # ------------------------------------------------------------------

    async def delete_all(self, record_type: RecordType) -> int:
        async with self._serialized("delete_all"):
            adapter = await self._adapter(record_type)
            removed = await self._backend.delete(adapter.table)
        logger.info("Deleted all %d %s entries", removed, adapter.kind)
        return removed

    async def delete_older_than(
        self, before: date | datetime, record_type: RecordType
    ) -> int:
        """Delete every entry with record_date strictly before ``before``.

        Returns:
            Number of entries removed.
        """
        cutoff = to_record_date(before)
        async with self._serialized("delete_older_than"):
            adapter = await self._adapter(record_type)
            removed = await self._backend.delete(adapter.table, before=cutoff)
        logger.info("Deleted %d %s entries older than %s", removed, adapter.kind, cutoff)
        return removed
