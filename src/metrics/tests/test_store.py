"""Tests for CacheStore: merge rule, range reads, bounds, deletion."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from src.metrics.cache.backends import InMemoryCacheBackend
from src.metrics.cache.registry import RecordRegistry
from src.metrics.cache.store import CacheStore
from src.metrics.errors import PartialStoreError, PersistenceError, UnsupportedRecordType
from src.metrics.records import (
    AnkiDailyStats,
    AtCoderSubmission,
    TaskDailySummary,
    TaskSession,
    TypeQuickerStats,
)
from src.metrics.tests.conftest import T0, T1, tq

D1 = date(2025, 1, 1)
D2 = date(2025, 1, 2)
D3 = date(2025, 1, 3)


# ---------------------------------------------------------------------------
# Writes / merge rule
# ---------------------------------------------------------------------------


class TestStoreMerge:
    @pytest.mark.asyncio
    async def test_insert_then_count(self, store: CacheStore) -> None:
        report = await store.store([tq(D1, 80.0), tq(D2, 85.0)], fetched_at=T0)
        assert report.inserted == 2
        assert await store.count(TypeQuickerStats) == 2

    @pytest.mark.asyncio
    async def test_same_record_twice_is_idempotent(self, store: CacheStore) -> None:
        """Storing the same record twice with the same fetched_at leaves one unchanged entry."""
        record = tq(D1, 80.0)
        await store.store([record], fetched_at=T0)
        report = await store.store([record], fetched_at=T0)

        assert report.inserted == 0
        assert await store.count(TypeQuickerStats) == 1
        assert await store.fetch_by_key(TypeQuickerStats, record.cache_key) == record

    @pytest.mark.asyncio
    async def test_older_write_is_rejected(self, store: CacheStore) -> None:
        await store.store([tq(D1, 80.0)], fetched_at=T1)
        report = await store.store([tq(D1, 10.0)], fetched_at=T0)

        assert report.skipped_stale == 1
        stored = await store.fetch_by_key(TypeQuickerStats, "typequicker:stats:2025-01-01")
        assert stored.words_per_minute == 80.0

    @pytest.mark.asyncio
    async def test_newer_write_replaces(self, store: CacheStore) -> None:
        await store.store([tq(D1, 80.0)], fetched_at=T0)
        report = await store.store([tq(D1, 95.0)], fetched_at=T1)

        assert report.updated == 1
        stored = await store.fetch_by_key(TypeQuickerStats, "typequicker:stats:2025-01-01")
        assert stored.words_per_minute == 95.0
        entry = await store.entry(TypeQuickerStats, "typequicker:stats:2025-01-01")
        assert entry.fetched_at == T1

    @pytest.mark.asyncio
    async def test_default_fetched_at_comes_from_clock(self, store: CacheStore, clock) -> None:
        await store.store([tq(D1, 80.0)])
        entry = await store.entry(TypeQuickerStats, "typequicker:stats:2025-01-01")
        assert entry.fetched_at == clock.now

    @pytest.mark.asyncio
    async def test_concurrent_writers_keep_freshest(self, store: CacheStore) -> None:
        """Racing writes on one key land in freshness order, not arrival order."""
        stamps = [T0 + timedelta(minutes=m) for m in (5, 1, 9, 3, 7)]
        await asyncio.gather(
            *(store.store([tq(D1, float(i))], fetched_at=s) for i, s in enumerate(stamps))
        )
        stored = await store.fetch_by_key(TypeQuickerStats, "typequicker:stats:2025-01-01")
        assert stored.words_per_minute == 2.0  # written with the latest stamp (+9 min)

    @pytest.mark.asyncio
    async def test_mixed_kinds_are_routed_separately(self, store: CacheStore) -> None:
        anki = AnkiDailyStats(
            day=D1, review_count=10, study_time_seconds=300, correct_count=9, new_cards_count=2
        )
        await store.store([tq(D1, 80.0), anki], fetched_at=T0)
        assert await store.count(TypeQuickerStats) == 1
        assert await store.count(AnkiDailyStats) == 1
        assert await store.fetch(AnkiDailyStats) == [anki]

    @pytest.mark.asyncio
    async def test_nested_payload_round_trips(self, store: CacheStore) -> None:
        start = datetime(2025, 1, 2, 9, 0, tzinfo=timezone.utc)
        summary = TaskDailySummary(
            day=D2,
            sessions=(TaskSession("t1", "Write report", start, start + timedelta(minutes=25)),),
        )
        await store.store([summary], fetched_at=T0)
        assert await store.fetch_by_key(TaskDailySummary, summary.cache_key) == summary

    @pytest.mark.asyncio
    async def test_empty_batch(self, store: CacheStore) -> None:
        report = await store.store([], fetched_at=T0)
        assert report.written == 0
        assert report.ok


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_unregistered_kind_is_reported_but_batch_continues(
        self, backend: InMemoryCacheBackend
    ) -> None:
        registry = RecordRegistry()
        registry.register(TypeQuickerStats)
        store = CacheStore(backend, registry)
        anki = AnkiDailyStats(
            day=D1, review_count=1, study_time_seconds=1, correct_count=1, new_cards_count=0
        )

        with pytest.raises(PartialStoreError) as info:
            await store.store([anki, tq(D1, 80.0)], fetched_at=T0)

        assert info.value.report.inserted == 1
        assert [key for key, _ in info.value.report.failures] == ["anki:daily_stats:2025-01-01"]
        assert await store.count(TypeQuickerStats) == 1

    @pytest.mark.asyncio
    async def test_read_of_unregistered_kind_raises(self, store: CacheStore) -> None:
        with pytest.raises(UnsupportedRecordType):
            await store.fetch("nope:nothing")

    @pytest.mark.asyncio
    async def test_backend_errors_surface_as_persistence_error(
        self, registry: RecordRegistry
    ) -> None:
        backend = InMemoryCacheBackend()
        backend.query = AsyncMock(side_effect=OSError("disk gone"))
        store = CacheStore(backend, registry)

        with pytest.raises(PersistenceError, match="disk gone"):
            await store.fetch(TypeQuickerStats, D1, D3)

    @pytest.mark.asyncio
    async def test_corrupt_payload_surfaces_as_persistence_error(
        self, store: CacheStore, backend: InMemoryCacheBackend
    ) -> None:
        await store.store([tq(D1, 80.0)], fetched_at=T0)
        entry = backend._tables["cache_typequicker_stats"]["typequicker:stats:2025-01-01"]
        backend._tables["cache_typequicker_stats"][entry.cache_key] = type(entry)(
            cache_key=entry.cache_key,
            record_date=entry.record_date,
            fetched_at=entry.fetched_at,
            payload={"day": "not-a-date"},
        )
        with pytest.raises(PersistenceError):
            await store.fetch(TypeQuickerStats)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestStoreReads:
    @pytest.mark.asyncio
    async def test_range_is_inclusive_and_sorted(self, store: CacheStore) -> None:
        await store.store(
            [tq(date(2025, 1, d), float(d)) for d in (5, 1, 3, 2, 4)], fetched_at=T0
        )
        records = await store.fetch(TypeQuickerStats, D2, date(2025, 1, 4))
        assert [r.day for r in records] == [D2, D3, date(2025, 1, 4)]

    @pytest.mark.asyncio
    async def test_open_bounds(self, store: CacheStore) -> None:
        await store.store([tq(date(2025, 1, d), float(d)) for d in range(1, 6)], fetched_at=T0)
        assert len(await store.fetch(TypeQuickerStats, None, D2)) == 2
        assert len(await store.fetch(TypeQuickerStats, D3, None)) == 3
        assert len(await store.fetch(TypeQuickerStats)) == 5

    @pytest.mark.asyncio
    async def test_datetime_bounds_are_normalized(self, store: CacheStore) -> None:
        await store.store([tq(D1, 80.0), tq(D2, 85.0)], fetched_at=T0)
        records = await store.fetch(
            TypeQuickerStats, datetime(2025, 1, 2, 18, 0), datetime(2025, 1, 2, 6, 0)
        )
        assert [r.day for r in records] == [D2]

    @pytest.mark.asyncio
    async def test_reversed_range_is_empty(self, store: CacheStore) -> None:
        await store.store([tq(D1, 80.0)], fetched_at=T0)
        assert await store.fetch(TypeQuickerStats, D3, D1) == []

    @pytest.mark.asyncio
    async def test_same_day_ordered_by_key(self, store: CacheStore) -> None:
        subs = [
            AtCoderSubmission(
                id=i, epoch_second=1735725600, problem_id="abc001_a", contest_id="abc001",
                user_id="alice", language="Python", point=100.0, length=10, result="AC",
            )
            for i in (30, 10, 20)
        ]
        await store.store(subs, fetched_at=T0)
        records = await store.fetch(AtCoderSubmission)
        assert [r.cache_key for r in records] == [
            "atcoder:submission:10",
            "atcoder:submission:20",
            "atcoder:submission:30",
        ]

    @pytest.mark.asyncio
    async def test_point_lookup_miss_is_none(self, store: CacheStore) -> None:
        assert await store.fetch_by_key(TypeQuickerStats, "typequicker:stats:1999-01-01") is None

    @pytest.mark.asyncio
    async def test_bounds(self, store: CacheStore) -> None:
        assert await store.latest_record_date(TypeQuickerStats) is None
        assert await store.earliest_record_date(TypeQuickerStats) is None
        assert not await store.has_cached_data(TypeQuickerStats)

        await store.store([tq(D2, 1.0), tq(D1, 1.0), tq(D3, 1.0)], fetched_at=T0)
        assert await store.earliest_record_date(TypeQuickerStats) == D1
        assert await store.latest_record_date(TypeQuickerStats) == D3
        assert await store.has_cached_data(TypeQuickerStats)

    @pytest.mark.asyncio
    async def test_kind_tag_and_class_are_interchangeable(self, store: CacheStore) -> None:
        await store.store([tq(D1, 80.0)], fetched_at=T0)
        assert await store.count("typequicker:stats") == await store.count(TypeQuickerStats)


class TestCoverageLedger:
    @pytest.mark.asyncio
    async def test_marked_days_are_reported(self, store: CacheStore) -> None:
        await store.mark_covered(TypeQuickerStats, D1, D3)
        covered = await store.covered_dates(TypeQuickerStats, D2, date(2025, 1, 9))
        assert covered == {D2, D3}

    @pytest.mark.asyncio
    async def test_coverage_is_per_kind(self, store: CacheStore) -> None:
        await store.mark_covered(TypeQuickerStats, D1, D1)
        assert await store.covered_dates(AnkiDailyStats, D1, D1) == set()

    @pytest.mark.asyncio
    async def test_coverage_keeps_the_latest_fetch_time(self, store: CacheStore) -> None:
        await store.mark_covered(TypeQuickerStats, D1, D2, fetched_at=T1)
        await store.mark_covered(TypeQuickerStats, D2, D3, fetched_at=T0)
        assert await store.coverage(TypeQuickerStats, D1, D3) == {D1: T1, D2: T1, D3: T0}


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


class TestStoreDeletion:
    @pytest.mark.asyncio
    async def test_delete_older_than_uses_strict_predicate(self, store: CacheStore) -> None:
        await store.store([tq(date(2025, 1, d), float(d)) for d in range(1, 6)], fetched_at=T0)
        before = await store.count(TypeQuickerStats)

        removed = await store.delete_older_than(D3, TypeQuickerStats)

        assert removed == 2
        assert await store.count(TypeQuickerStats) == before - removed
        remaining = await store.fetch(TypeQuickerStats)
        assert [r.day for r in remaining] == [D3, date(2025, 1, 4), date(2025, 1, 5)]

    @pytest.mark.asyncio
    async def test_delete_older_than_drops_coverage(self, store: CacheStore) -> None:
        await store.mark_covered(TypeQuickerStats, D1, D3)
        await store.delete_older_than(D3, TypeQuickerStats)
        assert await store.covered_dates(TypeQuickerStats, D1, D3) == {D3}

    @pytest.mark.asyncio
    async def test_delete_older_than_nothing_matches(self, store: CacheStore) -> None:
        await store.store([tq(D3, 1.0)], fetched_at=T0)
        assert await store.delete_older_than(D1, TypeQuickerStats) == 0
        assert await store.count(TypeQuickerStats) == 1

    @pytest.mark.asyncio
    async def test_delete_all_only_touches_one_kind(self, store: CacheStore) -> None:
        anki = AnkiDailyStats(
            day=D1, review_count=1, study_time_seconds=1, correct_count=1, new_cards_count=0
        )
        await store.store([tq(D1, 1.0), tq(D2, 1.0), anki], fetched_at=T0)

        assert await store.delete_all(TypeQuickerStats) == 2
        assert await store.count(TypeQuickerStats) == 0
        assert await store.count(AnkiDailyStats) == 1
