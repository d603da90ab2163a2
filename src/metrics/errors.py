"""Error taxonomy for the metrics cache and sync layer.

A lookup that finds nothing is never an error: store point lookups return
``None`` instead of raising.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.metrics.cache.store import StoreReport


class MetricsError(Exception):
    """Base class for every error raised by the metrics package."""


class ConfigurationError(MetricsError):
    """A provider is not configured or is missing a required credential."""


class NetworkError(MetricsError):
    """Transport, HTTP, JSON or JSON-RPC failure talking to a provider.

    Attributes:
        status_code: HTTP status when the provider answered with an error
            response, ``None`` for transport or decode failures.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(MetricsError):
    """I/O, encode or decode failure inside the cache store."""


class UnsupportedRecordType(PersistenceError):
    """The record kind has no storage adapter in the registry."""


class PartialStoreError(PersistenceError):
    """One or more records of a batch could not be stored.

    The rest of the batch was still written; ``report`` says which keys
    failed and why.
    """

    def __init__(self, report: StoreReport) -> None:
        failed = ", ".join(key for key, _ in report.failures)
        super().__init__(f"{len(report.failures)} record(s) failed to store: {failed}")
        self.report = report
