"""Tests for the asyncpg cache backend against a mocked pool."""

from __future__ import annotations

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.metrics.cache.backends import StoredEntry, UpsertOutcome
from src.metrics.cache.postgres_backend import (
    COVERAGE_TABLE,
    PostgresCacheBackend,
    _deleted_count,
    build_conditional_upsert,
)

TABLE = "cache_typequicker_stats"
FETCHED = datetime(2025, 1, 5, 8, 0, tzinfo=timezone.utc)


def _async_cm(value=None) -> MagicMock:
    cm = MagicMock()
    cm.__aenter__.return_value = value
    cm.__aexit__.return_value = False
    return cm


@pytest.fixture
def conn() -> MagicMock:
    conn = MagicMock()
    conn.transaction.return_value = _async_cm()
    conn.execute = AsyncMock(return_value="DELETE 0")
    conn.executemany = AsyncMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=0)
    return conn


@pytest.fixture
def pg(conn: MagicMock) -> PostgresCacheBackend:
    pool = MagicMock()
    pool.acquire.return_value = _async_cm(conn)
    return PostgresCacheBackend(pool)


def _entry() -> StoredEntry:
    return StoredEntry(
        cache_key="typequicker:stats:2025-01-02",
        record_date=date(2025, 1, 2),
        fetched_at=FETCHED,
        payload={"day": "2025-01-02", "words_per_minute": 80.0},
    )


class TestConditionalUpsert:
    def test_query_guards_on_fetched_at(self) -> None:
        sql = build_conditional_upsert(TABLE)
        assert f"INSERT INTO {TABLE} AS existing" in sql
        assert "ON CONFLICT (cache_key) DO UPDATE" in sql
        assert "WHERE existing.fetched_at <= EXCLUDED.fetched_at" in sql
        assert "RETURNING (xmax = 0)" in sql

    @pytest.mark.asyncio
    async def test_insert(self, pg: PostgresCacheBackend, conn: MagicMock) -> None:
        conn.fetchrow.return_value = {"inserted": True}
        assert await pg.upsert_if_fresher(TABLE, _entry()) is UpsertOutcome.INSERTED
        args = conn.fetchrow.await_args.args
        assert args[1] == "typequicker:stats:2025-01-02"
        assert args[2] == date(2025, 1, 2)
        assert args[3] == FETCHED
        assert '"words_per_minute": 80.0' in args[4]

    @pytest.mark.asyncio
    async def test_update(self, pg: PostgresCacheBackend, conn: MagicMock) -> None:
        conn.fetchrow.return_value = {"inserted": False}
        assert await pg.upsert_if_fresher(TABLE, _entry()) is UpsertOutcome.UPDATED

    @pytest.mark.asyncio
    async def test_stale_write_returns_no_row(
        self, pg: PostgresCacheBackend, conn: MagicMock
    ) -> None:
        conn.fetchrow.return_value = None
        assert await pg.upsert_if_fresher(TABLE, _entry()) is UpsertOutcome.STALE

    @pytest.mark.asyncio
    async def test_runs_inside_a_transaction(
        self, pg: PostgresCacheBackend, conn: MagicMock
    ) -> None:
        await pg.upsert_if_fresher(TABLE, _entry())
        conn.transaction.assert_called_once()


class TestReads:
    @pytest.mark.asyncio
    async def test_get_decodes_text_payload(
        self, pg: PostgresCacheBackend, conn: MagicMock
    ) -> None:
        conn.fetchrow.return_value = {
            "cache_key": "typequicker:stats:2025-01-02",
            "record_date": date(2025, 1, 2),
            "fetched_at": FETCHED,
            "payload": '{"day": "2025-01-02"}',
        }
        entry = await pg.get(TABLE, "typequicker:stats:2025-01-02")
        assert entry.payload == {"day": "2025-01-02"}
        assert entry.fetched_at == FETCHED

    @pytest.mark.asyncio
    async def test_get_missing(self, pg: PostgresCacheBackend) -> None:
        assert await pg.get(TABLE, "nope") is None

    @pytest.mark.asyncio
    async def test_query_with_bounds_is_ordered(
        self, pg: PostgresCacheBackend, conn: MagicMock
    ) -> None:
        await pg.query(TABLE, date(2025, 1, 1), date(2025, 1, 3))
        sql, *args = conn.fetch.await_args.args
        assert "record_date >= $1 AND record_date <= $2" in sql
        assert "ORDER BY record_date ASC, cache_key ASC" in sql
        assert args == [date(2025, 1, 1), date(2025, 1, 3)]

    @pytest.mark.asyncio
    async def test_query_without_bounds(self, pg: PostgresCacheBackend, conn: MagicMock) -> None:
        await pg.query(TABLE)
        sql, *args = conn.fetch.await_args.args
        assert "WHERE" not in sql
        assert args == []

    @pytest.mark.asyncio
    async def test_count(self, pg: PostgresCacheBackend, conn: MagicMock) -> None:
        conn.fetchval.return_value = 7
        assert await pg.count(TABLE) == 7

    @pytest.mark.asyncio
    async def test_coverage(self, pg: PostgresCacheBackend, conn: MagicMock) -> None:
        conn.fetch.return_value = [{"day": date(2025, 1, 2), "fetched_at": FETCHED}]
        days = await pg.coverage(TABLE, date(2025, 1, 1), date(2025, 1, 3))
        assert days == {date(2025, 1, 2): FETCHED}


class TestWrites:
    @pytest.mark.asyncio
    async def test_ensure_table_runs_once(self, pg: PostgresCacheBackend, conn: MagicMock) -> None:
        await pg.ensure_table(TABLE)
        await pg.ensure_table(TABLE)
        statements = [c.args[0] for c in conn.execute.await_args_list]
        assert len(statements) == 3
        assert statements[0].startswith(f"CREATE TABLE IF NOT EXISTS {TABLE}")
        assert COVERAGE_TABLE in statements[2]

    @pytest.mark.asyncio
    async def test_delete_before_day(self, pg: PostgresCacheBackend, conn: MagicMock) -> None:
        conn.execute.return_value = "DELETE 4"
        removed = await pg.delete(TABLE, before=date(2025, 1, 1))
        assert removed == 4
        first, second = conn.execute.await_args_list
        assert "record_date < $1" in first.args[0]
        assert second.args[1:] == (TABLE, date(2025, 1, 1))

    @pytest.mark.asyncio
    async def test_add_coverage_skips_empty(self, pg: PostgresCacheBackend, conn: MagicMock) -> None:
        await pg.add_coverage(TABLE, [], FETCHED)
        conn.executemany.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_add_coverage_only_moves_fetched_at_forward(
        self, pg: PostgresCacheBackend, conn: MagicMock
    ) -> None:
        await pg.add_coverage(TABLE, [date(2025, 1, 1), date(2025, 1, 2)], FETCHED)
        sql, rows = conn.executemany.await_args.args
        assert "ON CONFLICT (table_name, day) DO UPDATE" in sql
        assert "WHERE covered.fetched_at < EXCLUDED.fetched_at" in sql
        assert rows == [(TABLE, date(2025, 1, 1), FETCHED), (TABLE, date(2025, 1, 2), FETCHED)]


class TestDeletedCount:
    def test_parses_command_tag(self) -> None:
        assert _deleted_count("DELETE 12") == 12

    def test_garbage_is_zero(self) -> None:
        assert _deleted_count("") == 0
        assert _deleted_count(None) == 0
