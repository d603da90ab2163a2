"""Record contract and remote client base class for the metrics cache.

Every provider record subclasses CacheableRecord and every provider client
subclasses RemoteClient.  The cache store, the caching wrapper and the sync
orchestrator only ever talk to these two interfaces.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import ClassVar

from src.metrics.cache.gaps import DateRange, to_record_date
from src.metrics.errors import ConfigurationError

logger = logging.getLogger("goalsync.metrics")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Metric metadata / provider settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricInfo:
    """A metric a record kind can report to progress trackers.

    Attributes:
        key:  Stable metric key, e.g. 'wpm'.
        name: Human-readable label.
        unit: Display unit, e.g. 'wpm', '%', 'min'.
    """

    key: str
    name: str
    unit: str = ""


@dataclass
class DataSourceSettings:
    """Opaque configuration bag handed to RemoteClient.configure().

    Attributes:
        provider:    SOURCE_ID of the client the settings belong to.
        credentials: Named secrets (usernames, API keys).
        options:     Named non-secret options (hosts, deck lists, base URLs).
    """

    provider: str
    credentials: dict[str, str] = field(default_factory=dict)
    options: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Cacheable record contract
# ---------------------------------------------------------------------------


class CacheableRecord(ABC):
    """Immutable value that can live in the cache store.

    Concrete records are frozen dataclasses that set ``PROVIDER``,
    ``RECORD_TYPE`` and ``METRICS`` and implement ``discriminator``,
    ``record_date`` and ``metric_value``.
    """

    #: Provider tag, first segment of the cache key.
    PROVIDER: ClassVar[str] = "unknown"

    #: Record type tag, second segment of the cache key.
    RECORD_TYPE: ClassVar[str] = "unknown"

    #: Metrics this record kind can report.
    METRICS: ClassVar[tuple[MetricInfo, ...]] = ()

    @classmethod
    def kind(cls) -> str:
        """Routing tag ``{provider}:{record_type}`` used by the registry."""
        return f"{cls.PROVIDER}:{cls.RECORD_TYPE}"

    @property
    @abstractmethod
    def discriminator(self) -> str:
        """Last cache-key segment: an ISO date or a provider-native id."""

    @property
    @abstractmethod
    def record_date(self) -> date:
        """Logical day the record is attributed to."""

    @property
    def cache_key(self) -> str:
        return f"{self.kind()}:{self.discriminator}"

    @abstractmethod
    def metric_value(self, key: str) -> float | None:
        """Extract one metric as a float, or None if this record has no such metric."""


class DailyRecord(CacheableRecord):
    """Mixin for records keyed by their calendar day (``day`` field)."""

    day: date

    @property
    def discriminator(self) -> str:
        return self.day.isoformat()

    @property
    def record_date(self) -> date:
        return to_record_date(self.day)


# ---------------------------------------------------------------------------
# Abstract remote client
# ---------------------------------------------------------------------------


class RemoteClient(ABC):
    """Abstract base class for provider clients wrapped by the cache.

    Subclasses must implement:
        - fetch()

    Optional overrides:
        - fetch_latest()   (defaults to the newest record of a short trailing window)
        - is_configured()  (for sources that need no configuration)
    """

    #: Unique slug used by the orchestrator and the API (e.g. 'typequicker').
    SOURCE_ID: str = "unknown"

    #: Human-readable name for logging.
    DISPLAY_NAME: str = "Unknown Provider"

    #: The single record kind this client produces.
    RECORD_TYPE: type[CacheableRecord]

    #: Credential keys that must be present and non-empty in configure().
    REQUIRED_CREDENTIALS: tuple[str, ...] = ()

    #: Days fetch_latest() looks back when searching for the newest record.
    LATEST_LOOKBACK_DAYS: int = 7

    def __init__(self) -> None:
        self._settings: DataSourceSettings | None = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def is_configured(self) -> bool:
        return self._settings is not None

    def configure(self, settings: DataSourceSettings) -> None:
        """Validate and apply provider settings.

        Raises:
            ConfigurationError: If a required credential is missing or empty.
        """
        missing = [
            key for key in self.REQUIRED_CREDENTIALS
            if not (settings.credentials.get(key) or "").strip()
        ]
        if missing:
            raise ConfigurationError(
                f"{self.DISPLAY_NAME} is missing required credential(s): {', '.join(missing)}"
            )
        self._settings = settings
        logger.info("%s configured", self.DISPLAY_NAME)

    def clear_configuration(self) -> None:
        self._settings = None

    def _require_settings(self) -> DataSourceSettings:
        if self._settings is None:
            raise ConfigurationError(f"{self.DISPLAY_NAME} is not configured")
        return self._settings

    def credential(self, key: str) -> str:
        return self._require_settings().credentials.get(key, "").strip()

    def option(self, key: str, default: str = "") -> str:
        value = self._require_settings().options.get(key)
        return value.strip() if value and value.strip() else default

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch(self, date_range: DateRange) -> list[CacheableRecord]:
        """Fetch every record of RECORD_TYPE whose record date is in ``date_range``.

        Raises:
            ConfigurationError: If the client is not configured.
            NetworkError:       On any transport, HTTP or decode failure.
        """

    async def fetch_latest(self, today: date | None = None) -> CacheableRecord | None:
        """Return the newest record of a short trailing window, or None."""
        window = DateRange.trailing(
            self.LATEST_LOOKBACK_DAYS, today or utc_now().date()
        )
        records = await self.fetch(window)
        if not records:
            return None
        return max(records, key=lambda r: (r.record_date, r.cache_key))

    async def fetch_latest_value(self, key: str) -> float | None:
        record = await self.fetch_latest()
        return None if record is None else self.metric_value(key, record)

    def prune_local(self, before: date) -> int:
        """Drop source data held in-process with a record date before ``before``.

        Network providers hold none; on-device sources override this.
        """
        return 0

    # ------------------------------------------------------------------
    # Metric extraction
    # ------------------------------------------------------------------

    def available_metrics(self) -> tuple[MetricInfo, ...]:
        return self.RECORD_TYPE.METRICS

    def metric_value(self, key: str, record: CacheableRecord) -> float | None:
        return record.metric_value(key)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _safe_int(value) -> int | None:
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _safe_float(value) -> float | None:
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _day_start_epoch(day: date) -> int:
        return int(datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp())

    @staticmethod
    def _day_end_epoch(day: date) -> int:
        """First second of the following day (exclusive upper bound)."""
        return RemoteClient._day_start_epoch(day + timedelta(days=1))
