"""Load, validate, and hot-reload the sync tuning configuration.

The config lives in ``sync_config.yaml`` alongside this module.  It is loaded
once on first use and cached.  ``reload_sync_config()`` re-reads it from disk
without a restart.

Usage::

    from src.metrics.config_loader import get_sync_config

    config = get_sync_config()
    config.provider("anki").volatile_days        # 1
    config.window_days_for("atcoder")            # 90
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("goalsync.metrics.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class ProviderSyncConfig:
    """Per-provider sync tuning.

    Attributes:
        enabled:               Whether the orchestrator syncs this provider at all.
        window_days:           Trailing sync window; None uses the orchestrator default.
        volatile_days:         Trailing days always re-fetched even when cached.
        retention_days:        Days of history kept by the retention sweep; None keeps everything.
        fetch_timeout_seconds: Timeout for one remote sub-range fetch.
    """

    enabled: bool = True
    window_days: int | None = None
    volatile_days: int = 0
    retention_days: int | None = None
    fetch_timeout_seconds: float = 30.0


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:             Config schema version string.
        default_window_days: Trailing window used when a provider sets none.
        max_concurrent:      Providers synced at the same time.
        providers:           SOURCE_ID → ProviderSyncConfig.
    """

    version: str = "1.0"
    default_window_days: int = 90
    max_concurrent: int = 4
    providers: dict[str, ProviderSyncConfig] = field(default_factory=dict)
    _raw: dict = field(default_factory=dict, repr=False)

    def provider(self, source_id: str) -> ProviderSyncConfig:
        """Config for one provider; defaults when the YAML does not mention it."""
        return self.providers.get(source_id) or ProviderSyncConfig()

    def window_days_for(self, source_id: str) -> int:
        return self.provider(source_id).window_days or self.default_window_days


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError:     If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    All problems are collected and raised together.

    Raises:
        ConfigValidationError: If any value is missing or out of range.
    """
    errors: list[str] = []

    def _int(value: Any, where: str, minimum: int) -> int | None:
        try:
            number = int(value)
        except (TypeError, ValueError):
            errors.append(f"{where} must be an integer, got {value!r}")
            return None
        if number < minimum:
            errors.append(f"{where} = {number} must be >= {minimum}")
        return number

    if not isinstance(raw, dict):
        raise ConfigValidationError("sync_config.yaml must contain a mapping at top level")

    version = str(raw.get("version", "1.0"))

    # ── Orchestrator ──
    orch_raw = raw.get("orchestrator") or {}
    default_window = _int(orch_raw.get("default_window_days", 90), "orchestrator.default_window_days", 1)
    max_concurrent = _int(orch_raw.get("max_concurrent", 4), "orchestrator.max_concurrent", 1)

    # ── Providers ──
    providers: dict[str, ProviderSyncConfig] = {}
    for source_id, cfg in (raw.get("providers") or {}).items():
        section = f"providers.{source_id}"
        if not isinstance(cfg, dict):
            errors.append(f"{section} must be a mapping")
            continue

        window = cfg.get("window_days")
        retention = cfg.get("retention_days")
        timeout_raw = cfg.get("fetch_timeout_seconds", 30)
        try:
            timeout = float(timeout_raw)
        except (TypeError, ValueError):
            errors.append(f"{section}.fetch_timeout_seconds must be a number, got {timeout_raw!r}")
            timeout = 30.0
        if timeout <= 0:
            errors.append(f"{section}.fetch_timeout_seconds = {timeout} must be > 0")

        providers[source_id] = ProviderSyncConfig(
            enabled=bool(cfg.get("enabled", True)),
            window_days=None if window is None else _int(window, f"{section}.window_days", 1),
            volatile_days=_int(cfg.get("volatile_days", 0), f"{section}.volatile_days", 0) or 0,
            retention_days=(
                None if retention is None
                else _int(retention, f"{section}.retention_days", 1)
            ),
            fetch_timeout_seconds=timeout,
        )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        default_window_days=default_window or 90,
        max_concurrent=max_concurrent or 4,
        providers=providers,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails the old config is kept and the error re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
