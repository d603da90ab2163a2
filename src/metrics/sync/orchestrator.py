"""Sync orchestrator: drives every provider wrapper over a trailing window.

Per-provider state machine::

    unconfigured ──configure──▶ ready ──run──▶ syncing ──▶ synced | failed

Providers run concurrently (bounded by ``max_concurrent``).  One provider's
failure never aborts the others; the result is a SyncReport of per-provider
outcomes, never a single pass/fail flag.  After a provider syncs, each
registered ProgressTracker receives the latest cached value of every metric
it tracks for that provider.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable

from src.metrics.base import DataSourceSettings, utc_now
from src.metrics.cache.gaps import DateRange, to_record_date
from src.metrics.cache.wrapper import CachingClient
from src.metrics.clients import settings_for
from src.metrics.config_loader import SyncConfig
from src.metrics.errors import ConfigurationError

if TYPE_CHECKING:
    from src.config import Settings

logger = logging.getLogger("goalsync.metrics.sync.orchestrator")


class ProviderState(str, Enum):
    UNCONFIGURED = "unconfigured"
    READY = "ready"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"


@dataclass
class ProviderOutcome:
    """Result of syncing one provider.

    Attributes:
        source_id:      Provider slug.
        state:          Terminal state: synced, failed, or unconfigured (skipped).
        window:         Date range that was requested.
        records:        Records in the cache for the window after the sync.
        fetched_ranges: Sub-ranges fetched from the network.
        warnings:       Sub-range and tracker failures that did not fail the provider.
        error:          Cause when ``state`` is failed.
        finished_at:    UTC completion time.
    """

    source_id: str
    state: ProviderState
    window: DateRange | None = None
    records: int = 0
    fetched_ranges: list[DateRange] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    finished_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "state": self.state.value,
            "window": str(self.window) if self.window else None,
            "records": self.records,
            "fetched_ranges": [str(r) for r in self.fetched_ranges],
            "warnings": list(self.warnings),
            "error": self.error,
            "finished_at": self.finished_at.isoformat(),
        }


@dataclass
class SyncReport:
    """Collection of per-provider outcomes for one orchestrator run."""

    started_at: datetime
    outcomes: dict[str, ProviderOutcome] = field(default_factory=dict)
    finished_at: datetime | None = None

    def _with_state(self, state: ProviderState) -> list[str]:
        return sorted(sid for sid, o in self.outcomes.items() if o.state is state)

    @property
    def synced(self) -> list[str]:
        return self._with_state(ProviderState.SYNCED)

    @property
    def failed(self) -> list[str]:
        return self._with_state(ProviderState.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self._with_state(ProviderState.UNCONFIGURED)

    @property
    def warnings(self) -> dict[str, list[str]]:
        return {sid: o.warnings for sid, o in self.outcomes.items() if o.warnings}

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "synced": self.synced,
            "failed": self.failed,
            "skipped": self.skipped,
            "outcomes": {sid: o.to_dict() for sid, o in sorted(self.outcomes.items())},
        }


class ProgressTracker(ABC):
    """Downstream consumer of metric values (goals, streaks, badges)."""

    @abstractmethod
    def tracked_metrics(self) -> list[tuple[str, str]]:
        """(source_id, metric_key) pairs this tracker wants updates for."""

    @abstractmethod
    async def update(self, provider: str, metric_key: str, value: float | None) -> None:
        """Receive the latest value of one metric (None when nothing is cached)."""


class SyncOrchestrator:
    """Run every provider's caching wrapper for a trailing window.

    Usage::

        orchestrator = SyncOrchestrator(build_caching_clients(store, config), config=config)
        orchestrator.configure_from_settings(get_settings())
        report = await orchestrator.run()
    """

    def __init__(
        self,
        providers: Iterable[CachingClient],
        trackers: Iterable[ProgressTracker] = (),
        *,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._providers: dict[str, CachingClient] = {}
        for provider in providers:
            if provider.source_id in self._providers:
                raise ValueError(f"Duplicate provider '{provider.source_id}'")
            self._providers[provider.source_id] = provider
        self._trackers: list[ProgressTracker] = list(trackers)
        self._config = config or SyncConfig()
        self._clock = clock or utc_now
        self._states: dict[str, ProviderState] = {
            sid: ProviderState.READY if p.is_configured() else ProviderState.UNCONFIGURED
            for sid, p in self._providers.items()
        }
        self._last_report: SyncReport | None = None

    # ------------------------------------------------------------------
    # Providers / state
    # ------------------------------------------------------------------

    @property
    def providers(self) -> dict[str, CachingClient]:
        return dict(self._providers)

    def provider(self, source_id: str) -> CachingClient:
        if source_id not in self._providers:
            raise KeyError(
                f"Unknown provider '{source_id}'. Available: {sorted(self._providers)}"
            )
        return self._providers[source_id]

    def state(self, source_id: str) -> ProviderState:
        self.provider(source_id)
        return self._states[source_id]

    def states(self) -> dict[str, ProviderState]:
        return dict(self._states)

    @property
    def last_report(self) -> SyncReport | None:
        return self._last_report

    def register_tracker(self, tracker: ProgressTracker) -> None:
        self._trackers.append(tracker)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure(self, source_id: str, settings: DataSourceSettings) -> None:
        """Configure one provider; it moves to ready on success.

        Raises:
            ConfigurationError: If the settings are rejected.  The provider
                is left unconfigured.
        """
        provider = self.provider(source_id)
        try:
            provider.configure(settings)
        except ConfigurationError:
            provider.clear_configuration()
            self._states[source_id] = ProviderState.UNCONFIGURED
            raise
        self._states[source_id] = ProviderState.READY

    def configure_from_settings(self, settings: Settings) -> dict[str, ProviderState]:
        """Configure every provider from application settings.

        Providers whose required credentials are empty stay unconfigured.
        A provider that rejects its settings is logged and left unconfigured;
        the others are still configured.
        """
        for source_id, provider in self._providers.items():
            ds = settings_for(source_id, settings)
            if ds is None:
                if not provider.is_configured():
                    logger.info("%s: no credentials, leaving unconfigured", source_id)
                    self._states[source_id] = ProviderState.UNCONFIGURED
                continue
            try:
                self.configure(source_id, ds)
            except ConfigurationError as exc:
                logger.warning("%s: configuration rejected: %s", source_id, exc)
        return self.states()

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def window_for(self, source_id: str, window_days: int | None = None) -> DateRange:
        days = window_days or self._config.window_days_for(source_id)
        return DateRange.trailing(days, to_record_date(self._clock()))

    async def run(self, window_days: int | None = None) -> SyncReport:
        """Sync every provider over its trailing window.

        Args:
            window_days: Override every provider's window.  None uses the
                         per-provider value from the sync config.

        Returns:
            SyncReport with one outcome per provider.
        """
        report = SyncReport(started_at=self._clock())
        if not self._providers:
            logger.debug("SyncOrchestrator: no providers registered")
            report.finished_at = self._clock()
            self._last_report = report
            return report

        logger.info("SyncOrchestrator: syncing %d providers", len(self._providers))
        semaphore = asyncio.Semaphore(self._config.max_concurrent)
        source_ids = list(self._providers)
        tasks = [self._run_provider(sid, window_days, semaphore) for sid in source_ids]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        for source_id, result in zip(source_ids, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error("%s: sync crashed: %s", source_id, result)
                self._states[source_id] = ProviderState.FAILED
                result = ProviderOutcome(
                    source_id=source_id, state=ProviderState.FAILED, error=str(result)
                )
            report.outcomes[source_id] = result

        report.finished_at = self._clock()
        self._last_report = report
        logger.info(
            "SyncOrchestrator: %d synced, %d failed, %d skipped",
            len(report.synced),
            len(report.failed),
            len(report.skipped),
        )
        return report

    async def _run_provider(
        self, source_id: str, window_days: int | None, semaphore: asyncio.Semaphore
    ) -> ProviderOutcome:
        async with semaphore:
            return await self._sync_provider(source_id, window_days)

    async def _sync_provider(self, source_id: str, window_days: int | None) -> ProviderOutcome:
        provider = self._providers[source_id]
        window = self.window_for(source_id, window_days)

        if not provider.is_configured():
            self._states[source_id] = ProviderState.UNCONFIGURED
            logger.info("%s: not configured, skipped", source_id)
            return ProviderOutcome(
                source_id=source_id, state=ProviderState.UNCONFIGURED, window=window
            )

        self._states[source_id] = ProviderState.SYNCING
        outcome = ProviderOutcome(source_id=source_id, state=ProviderState.SYNCING, window=window)

        try:
            result = await provider.fetch_range(window.start, window.end)
        except Exception as exc:
            logger.warning("%s: sync failed: %s", source_id, exc)
            outcome.state = ProviderState.FAILED
            outcome.error = str(exc)
            outcome.finished_at = self._clock()
            self._states[source_id] = outcome.state
            return outcome

        outcome.records = len(result.records)
        outcome.fetched_ranges = list(result.fetched_ranges)
        outcome.warnings = [str(f) for f in result.failures]

        if result.failures and not result.fetched_ranges:
            outcome.state = ProviderState.FAILED
            outcome.error = "; ".join(outcome.warnings[:3])
        else:
            outcome.state = ProviderState.SYNCED
            outcome.warnings.extend(await self._notify_trackers(provider))

        outcome.finished_at = self._clock()
        self._states[source_id] = outcome.state
        logger.info(
            "%s: %s, %d record(s) in %s, %d warning(s)",
            source_id,
            outcome.state.value,
            outcome.records,
            window,
            len(outcome.warnings),
        )
        return outcome

    async def _notify_trackers(self, provider: CachingClient) -> list[str]:
        warnings: list[str] = []
        for tracker in self._trackers:
            for source_id, metric_key in tracker.tracked_metrics():
                if source_id != provider.source_id:
                    continue
                try:
                    value = await provider.latest_cached_value(metric_key)
                    await tracker.update(source_id, metric_key, value)
                except Exception as exc:
                    logger.warning(
                        "%s: tracker update for %s failed: %s", source_id, metric_key, exc
                    )
                    warnings.append(f"tracker {metric_key}: {exc}")
        return warnings

