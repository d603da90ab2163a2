"""Postgres cache backend (asyncpg).

One table per record kind::

    cache_<kind> (
        cache_key   TEXT PRIMARY KEY,
        record_date DATE NOT NULL,
        fetched_at  TIMESTAMPTZ NOT NULL,
        payload     JSONB NOT NULL,
        updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )

plus one shared ``cache_coverage (table_name, day, fetched_at)`` ledger.  The freshness
rule lives in the upsert's ``WHERE`` clause, so a single statement decides
insert / update / stale and no row is ever half-written.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Iterable

import asyncpg

from src.metrics.cache.backends import CacheBackend, StoredEntry, UpsertOutcome
from src.services.postgres import get_connection

logger = logging.getLogger("goalsync.metrics.cache.postgres")

COVERAGE_TABLE = "cache_coverage"


def build_conditional_upsert(table: str) -> str:
    """INSERT ... ON CONFLICT DO UPDATE guarded by fetched_at.

    ``RETURNING (xmax = 0)`` is true for a fresh insert and false for an
    update; no row comes back when the guard rejects a stale write.
    """
    return (
        f"INSERT INTO {table} AS existing (cache_key, record_date, fetched_at, payload) "
        f"VALUES ($1, $2, $3, $4::jsonb) "
        f"ON CONFLICT (cache_key) DO UPDATE SET "
        f"record_date = EXCLUDED.record_date, "
        f"fetched_at = EXCLUDED.fetched_at, "
        f"payload = EXCLUDED.payload, "
        f"updated_at = NOW() "
        f"WHERE existing.fetched_at <= EXCLUDED.fetched_at "
        f"RETURNING (xmax = 0) AS inserted"
    )


def _deleted_count(status: str) -> int:
    """Parse asyncpg's command tag, e.g. 'DELETE 3' → 3."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


def _to_entry(row: asyncpg.Record) -> StoredEntry:
    payload = row["payload"]
    if isinstance(payload, str):
        payload = json.loads(payload)
    return StoredEntry(
        cache_key=row["cache_key"],
        record_date=row["record_date"],
        fetched_at=row["fetched_at"],
        payload=payload,
    )


class PostgresCacheBackend(CacheBackend):
    """CacheBackend over an asyncpg pool.

    Table names come from the record registry, which only admits
    ``[a-z_][a-z0-9_]*`` identifiers, so interpolating them is safe.
    """

    NAME = "postgres"

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool
        self._ready: set[str] = set()

    async def ensure_table(self, table: str) -> None:
        if table in self._ready:
            return
        async with get_connection(self._pool) as conn:
            await conn.execute(
                f"CREATE TABLE IF NOT EXISTS {table} ("
                "cache_key TEXT PRIMARY KEY, "
                "record_date DATE NOT NULL, "
                "fetched_at TIMESTAMPTZ NOT NULL, "
                "payload JSONB NOT NULL, "
                "updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW())"
            )
            await conn.execute(
                f"CREATE INDEX IF NOT EXISTS {table}_record_date_idx "
                f"ON {table} (record_date)"
            )
            await conn.execute(
                f"CREATE TABLE IF NOT EXISTS {COVERAGE_TABLE} ("
                "table_name TEXT NOT NULL, "
                "day DATE NOT NULL, "
                "fetched_at TIMESTAMPTZ NOT NULL, "
                "PRIMARY KEY (table_name, day))"
            )
        self._ready.add(table)
        logger.info("Ensured cache table %s", table)

    async def get(self, table: str, cache_key: str) -> StoredEntry | None:
        async with get_connection(self._pool) as conn:
            row = await conn.fetchrow(
                f"SELECT cache_key, record_date, fetched_at, payload FROM {table} "
                "WHERE cache_key = $1",
                cache_key,
            )
        return _to_entry(row) if row else None

    async def upsert_if_fresher(self, table: str, entry: StoredEntry) -> UpsertOutcome:
        async with get_connection(self._pool) as conn:
            row = await conn.fetchrow(
                build_conditional_upsert(table),
                entry.cache_key,
                entry.record_date,
                entry.fetched_at,
                json.dumps(entry.payload),
            )
        if row is None:
            return UpsertOutcome.STALE
        return UpsertOutcome.INSERTED if row["inserted"] else UpsertOutcome.UPDATED

    async def query(
        self, table: str, start: date | None = None, end: date | None = None
    ) -> list[StoredEntry]:
        clauses: list[str] = []
        args: list[date] = []
        if start is not None:
            args.append(start)
            clauses.append(f"record_date >= ${len(args)}")
        if end is not None:
            args.append(end)
            clauses.append(f"record_date <= ${len(args)}")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        async with get_connection(self._pool) as conn:
            rows = await conn.fetch(
                f"SELECT cache_key, record_date, fetched_at, payload FROM {table}"
                f"{where} ORDER BY record_date ASC, cache_key ASC",
                *args,
            )
        return [_to_entry(r) for r in rows]

    async def bounds(self, table: str) -> tuple[date | None, date | None]:
        async with get_connection(self._pool) as conn:
            row = await conn.fetchrow(
                f"SELECT MIN(record_date) AS earliest, MAX(record_date) AS latest FROM {table}"
            )
        if row is None:
            return None, None
        return row["earliest"], row["latest"]

    async def count(self, table: str) -> int:
        async with get_connection(self._pool) as conn:
            value = await conn.fetchval(f"SELECT COUNT(*) FROM {table}")
        return int(value or 0)

    async def delete(self, table: str, before: date | None = None) -> int:
        async with get_connection(self._pool) as conn:
            if before is None:
                status = await conn.execute(f"DELETE FROM {table}")
                await conn.execute(
                    f"DELETE FROM {COVERAGE_TABLE} WHERE table_name = $1", table
                )
            else:
                status = await conn.execute(
                    f"DELETE FROM {table} WHERE record_date < $1", before
                )
                await conn.execute(
                    f"DELETE FROM {COVERAGE_TABLE} WHERE table_name = $1 AND day < $2",
                    table,
                    before,
                )
        return _deleted_count(status)

    async def add_coverage(
        self, table: str, days: Iterable[date], fetched_at: datetime
    ) -> None:
        rows = [(table, d, fetched_at) for d in days]
        if not rows:
            return
        async with get_connection(self._pool) as conn:
            await conn.executemany(
                f"INSERT INTO {COVERAGE_TABLE} AS covered (table_name, day, fetched_at) "
                "VALUES ($1, $2, $3) "
                "ON CONFLICT (table_name, day) DO UPDATE SET fetched_at = EXCLUDED.fetched_at "
                "WHERE covered.fetched_at < EXCLUDED.fetched_at",
                rows,
            )

    async def coverage(self, table: str, start: date, end: date) -> dict[date, datetime]:
        async with get_connection(self._pool) as conn:
            rows = await conn.fetch(
                f"SELECT day, fetched_at FROM {COVERAGE_TABLE} "
                "WHERE table_name = $1 AND day >= $2 AND day <= $3",
                table,
                start,
                end,
            )
        return {r["day"]: r["fetched_at"] for r in rows}

    async def close(self) -> None:
        self._ready.clear()
