"""GoalSync metrics layer.

Aggregates time-series metrics from several providers into one local cache
so goal tracking can query any provider without re-fetching data it already
has.

Subpackages:
    cache/   — Gap calculation, record registry, backends, CacheStore, CachingClient
    clients/ — Provider clients (TypeQuicker, AtCoder, Anki, task timer)
    sync/    — Sync orchestrator and retention sweep

Core modules:
    base          — CacheableRecord / RemoteClient contracts
    records       — Concrete record kinds
    errors        — Error taxonomy
    config_loader — Load/validate/hot-reload sync_config.yaml
"""

from src.metrics.base import CacheableRecord, DataSourceSettings, MetricInfo, RemoteClient
from src.metrics.cache.gaps import DateRange, missing_ranges
from src.metrics.cache.store import CacheStore, StoreReport
from src.metrics.cache.wrapper import CachingClient, FetchResult
from src.metrics.config_loader import SyncConfig, get_sync_config
from src.metrics.errors import (
    ConfigurationError,
    MetricsError,
    NetworkError,
    PersistenceError,
)

__all__ = [
    "CacheableRecord",
    "DataSourceSettings",
    "MetricInfo",
    "RemoteClient",
    "DateRange",
    "missing_ranges",
    "CacheStore",
    "StoreReport",
    "CachingClient",
    "FetchResult",
    "SyncConfig",
    "get_sync_config",
    "ConfigurationError",
    "MetricsError",
    "NetworkError",
    "PersistenceError",
]
