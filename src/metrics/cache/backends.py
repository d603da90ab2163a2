"""Persistence backends behind the cache store.

A backend knows nothing about record classes.  It stores StoredEntry rows in
named tables and keeps a per-table coverage ledger mapping each day that has
already been fetched from the remote to when it was last fetched.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable

logger = logging.getLogger("goalsync.metrics.cache.backend")


@dataclass(frozen=True)
class StoredEntry:
    """Persisted form of a record.

    Attributes:
        cache_key:   Unique record identity.
        record_date: Day used for range predicates and ordering.
        fetched_at:  When the value was obtained; only used to resolve conflicts.
        payload:     Encoded record fields.
    """

    cache_key: str
    record_date: date
    fetched_at: datetime
    payload: dict[str, Any] = field(hash=False, compare=True)


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    STALE = "stale"


class CacheBackend(ABC):
    """Keyed, date-indexed storage for an arbitrary number of record tables."""

    #: Short name reported by the health endpoint.
    NAME: str = "abstract"

    @abstractmethod
    async def ensure_table(self, table: str) -> None:
        """Create the table (and its coverage bookkeeping) if it does not exist."""

    @abstractmethod
    async def get(self, table: str, cache_key: str) -> StoredEntry | None: ...

    @abstractmethod
    async def upsert_if_fresher(self, table: str, entry: StoredEntry) -> UpsertOutcome:
        """Insert, or replace the existing row only if ``entry.fetched_at`` is not older.

        Must be atomic per entry.
        """

    @abstractmethod
    async def query(
        self, table: str, start: date | None = None, end: date | None = None
    ) -> list[StoredEntry]:
        """Entries with record_date in [start, end], ordered by record_date then cache_key."""

    @abstractmethod
    async def bounds(self, table: str) -> tuple[date | None, date | None]:
        """(earliest, latest) record_date, both None when the table is empty."""

    @abstractmethod
    async def count(self, table: str) -> int: ...

    @abstractmethod
    async def delete(self, table: str, before: date | None = None) -> int:
        """Delete rows with record_date < before (all rows when None).

        Coverage for the same days is dropped too.  Returns the number of
        deleted entries.
        """

    @abstractmethod
    async def add_coverage(
        self, table: str, days: Iterable[date], fetched_at: datetime
    ) -> None:
        """Mark days as fetched at ``fetched_at``.  An existing mark only moves forward."""

    @abstractmethod
    async def coverage(self, table: str, start: date, end: date) -> dict[date, datetime]:
        """Covered days in [start, end] with the time each was last fetched."""

    async def close(self) -> None:
        return None


class InMemoryCacheBackend(CacheBackend):
    """Dict-backed backend for tests and database-less deployments."""

    NAME = "memory"

    def __init__(self) -> None:
        self._tables: dict[str, dict[str, StoredEntry]] = {}
        self._coverage: dict[str, dict[date, datetime]] = {}

    def _table(self, table: str) -> dict[str, StoredEntry]:
        return self._tables.setdefault(table, {})

    async def ensure_table(self, table: str) -> None:
        self._tables.setdefault(table, {})
        self._coverage.setdefault(table, {})

    async def get(self, table: str, cache_key: str) -> StoredEntry | None:
        return self._table(table).get(cache_key)

    async def upsert_if_fresher(self, table: str, entry: StoredEntry) -> UpsertOutcome:
        rows = self._table(table)
        existing = rows.get(entry.cache_key)
        if existing is None:
            rows[entry.cache_key] = entry
            return UpsertOutcome.INSERTED
        if entry.fetched_at < existing.fetched_at:
            return UpsertOutcome.STALE
        rows[entry.cache_key] = entry
        return UpsertOutcome.UPDATED

    async def query(
        self, table: str, start: date | None = None, end: date | None = None
    ) -> list[StoredEntry]:
        matches = [
            e for e in self._table(table).values()
            if (start is None or e.record_date >= start)
            and (end is None or e.record_date <= end)
        ]
        return sorted(matches, key=lambda e: (e.record_date, e.cache_key))

    async def bounds(self, table: str) -> tuple[date | None, date | None]:
        dates = [e.record_date for e in self._table(table).values()]
        if not dates:
            return None, None
        return min(dates), max(dates)

    async def count(self, table: str) -> int:
        return len(self._table(table))

    async def delete(self, table: str, before: date | None = None) -> int:
        rows = self._table(table)
        doomed = [
            key for key, e in rows.items()
            if before is None or e.record_date < before
        ]
        for key in doomed:
            del rows[key]
        covered = self._coverage.setdefault(table, {})
        for day in [d for d in covered if before is None or d < before]:
            del covered[day]
        return len(doomed)

    async def add_coverage(
        self, table: str, days: Iterable[date], fetched_at: datetime
    ) -> None:
        covered = self._coverage.setdefault(table, {})
        for day in days:
            previous = covered.get(day)
            if previous is None or previous < fetched_at:
                covered[day] = fetched_at

    async def coverage(self, table: str, start: date, end: date) -> dict[date, datetime]:
        return {
            d: at for d, at in self._coverage.get(table, {}).items() if start <= d <= end
        }
