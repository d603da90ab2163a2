"""Retention sweep: explicit pruning of old cache entries.

Nothing in the cache expires on its own.  The sweep deletes, per record
kind, every entry outside the provider's ``retention_days`` (today counts as the
first retained day); kinds without a retention value are left alone.  Sources
that hold data in-process, such as the task timer, are pruned to the same
cutoff.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable

from src.metrics.base import utc_now
from src.metrics.cache.gaps import to_record_date
from src.metrics.cache.store import CacheStore
from src.metrics.cache.wrapper import CachingClient
from src.metrics.config_loader import SyncConfig

logger = logging.getLogger("goalsync.metrics.sync.retention")


class RetentionSweeper:
    """Apply ``retention_days`` from the sync config to each provider's record kind."""

    def __init__(
        self,
        store: CacheStore,
        providers: Iterable[CachingClient],
        config: SyncConfig,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._providers = list(providers)
        self._config = config
        self._clock = clock or utc_now

    async def sweep(self) -> dict[str, int]:
        """Delete expired entries.

        Returns:
            Record kind → number of entries removed, for every kind that has a
            retention policy.
        """
        today = to_record_date(self._clock())
        removed: dict[str, int] = {}
        for provider in self._providers:
            retention_days = self._config.provider(provider.source_id).retention_days
            if retention_days is None:
                continue
            kind = provider.record_type.kind()
            cutoff = today - timedelta(days=retention_days - 1)
            removed[kind] = await self._store.delete_older_than(cutoff, provider.record_type)
            provider.remote.prune_local(cutoff)

        logger.info(
            "Retention sweep removed %d entries across %d kinds",
            sum(removed.values()),
            len(removed),
        )
        return removed
