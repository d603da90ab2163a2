"""Sync infrastructure for the metrics cache.

Modules:
    orchestrator — Trailing-window sync across all providers, per-provider outcomes
    retention    — Explicit delete-older-than sweep driven by sync_config.yaml
"""
