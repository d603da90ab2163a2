"""Tests for sync_config.yaml loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.metrics.clients import CLIENT_REGISTRY
from src.metrics.config_loader import (
    ConfigValidationError,
    ProviderSyncConfig,
    SyncConfig,
    _validate_and_build,
    get_sync_config,
    load_sync_config,
    reload_sync_config,
)


class TestConfigLoading:
    """Tests for loading the bundled sync_config.yaml."""

    def test_load_default_config(self, sync_config: SyncConfig) -> None:
        assert sync_config.version == "1.0"
        assert sync_config.default_window_days == 90
        assert sync_config.max_concurrent == 4

    def test_every_registered_client_is_configured(self, sync_config: SyncConfig) -> None:
        """Each client slug has its own section so tuning is explicit."""
        assert set(sync_config.providers) == set(CLIENT_REGISTRY)

    def test_volatile_window_for_daily_providers(self, sync_config: SyncConfig) -> None:
        for source_id in ("typequicker", "anki", "tasks"):
            assert sync_config.provider(source_id).volatile_days == 1

    def test_contest_history_is_never_pruned(self, sync_config: SyncConfig) -> None:
        assert sync_config.provider("atcoder").retention_days is None

    def test_window_days_for(self, sync_config: SyncConfig) -> None:
        assert sync_config.window_days_for("atcoder") == 365
        assert sync_config.window_days_for("tasks") == 30
        assert sync_config.window_days_for("anki") == 90

    def test_unknown_provider_gets_defaults(self, sync_config: SyncConfig) -> None:
        assert sync_config.provider("fitbit") == ProviderSyncConfig()

    def test_singleton(self) -> None:
        assert get_sync_config() is get_sync_config()


class TestConfigValidation:
    """Tests for config validation logic."""

    def test_empty_config_uses_defaults(self) -> None:
        config = _validate_and_build({})
        assert config.default_window_days == 90
        assert config.providers == {}

    def test_provider_section(self) -> None:
        raw = {
            "providers": {
                "anki": {"window_days": 14, "volatile_days": 2, "fetch_timeout_seconds": 5},
            },
        }
        anki = _validate_and_build(raw).provider("anki")
        assert anki.window_days == 14
        assert anki.volatile_days == 2
        assert anki.fetch_timeout_seconds == 5.0
        assert anki.enabled

    def test_negative_volatile_days_raises(self) -> None:
        raw = {"providers": {"anki": {"volatile_days": -1}}}
        with pytest.raises(ConfigValidationError, match="volatile_days"):
            _validate_and_build(raw)

    def test_non_numeric_window_raises(self) -> None:
        raw = {"providers": {"anki": {"window_days": "forever"}}}
        with pytest.raises(ConfigValidationError, match="must be an integer"):
            _validate_and_build(raw)

    def test_zero_timeout_raises(self) -> None:
        raw = {"providers": {"tasks": {"fetch_timeout_seconds": 0}}}
        with pytest.raises(ConfigValidationError, match="must be > 0"):
            _validate_and_build(raw)

    def test_errors_are_collected(self) -> None:
        raw = {
            "orchestrator": {"max_concurrent": 0},
            "providers": {"anki": {"retention_days": 0}, "tasks": "yes"},
        }
        with pytest.raises(ConfigValidationError, match="3 validation error"):
            _validate_and_build(raw)

    def test_top_level_must_be_mapping(self) -> None:
        with pytest.raises(ConfigValidationError, match="mapping"):
            _validate_and_build(["not", "a", "mapping"])

    def test_hot_reload(self, tmp_path: Path) -> None:
        """reload_sync_config() should replace the global singleton."""
        config_file = tmp_path / "sync_config.yaml"
        config_file.write_text(
            'version: "2.0-test"\n'
            "orchestrator:\n"
            "  default_window_days: 7\n"
            "providers:\n"
            "  tasks:\n"
            "    enabled: false\n"
        )
        try:
            new_config = reload_sync_config(path=config_file)
            assert new_config.version == "2.0-test"
            assert get_sync_config() is new_config
            assert not new_config.provider("tasks").enabled
        finally:
            reload_sync_config()

    def test_failed_reload_keeps_old_config(self, tmp_path: Path) -> None:
        before = get_sync_config()
        config_file = tmp_path / "sync_config.yaml"
        config_file.write_text("orchestrator: {max_concurrent: -3}\n")
        with pytest.raises(ConfigValidationError):
            reload_sync_config(path=config_file)
        assert get_sync_config() is before

    def test_malformed_yaml_raises(self, tmp_path: Path) -> None:
        config_file = tmp_path / "sync_config.yaml"
        config_file.write_text("providers: [unclosed\n")
        with pytest.raises(ConfigValidationError, match="YAML parse error"):
            load_sync_config(path=config_file)

    def test_load_nonexistent_file_raises(self) -> None:
        with pytest.raises(FileNotFoundError):
            load_sync_config(path=Path("/nonexistent/path/sync_config.yaml"))
