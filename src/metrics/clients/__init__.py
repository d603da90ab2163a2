"""Provider clients wrapped by the metrics cache.

Each client implements the RemoteClient ABC and produces exactly one record
kind:

Available clients:
    TypeQuickerClient       — typing practice stats (HTTP)
    AtCoderContestClient    — AtCoder contest history (HTTP)
    AtCoderSubmissionClient — AtCoder submissions via kenkoooo (HTTP)
    AnkiClient              — flashcard reviews via AnkiConnect (local JSON-RPC)
    ZoteroClient            — reference-manager annotations and notes (HTTP)
    TaskTimerClient         — on-device task timer sessions
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from src.metrics.base import DataSourceSettings, RemoteClient
from src.metrics.cache.wrapper import CachingClient
from src.metrics.clients.anki import AnkiClient
from src.metrics.clients.atcoder import AtCoderContestClient, AtCoderSubmissionClient
from src.metrics.clients.tasks import TaskTimerClient
from src.metrics.clients.typequicker import TypeQuickerClient
from src.metrics.clients.zotero import ZoteroClient

if TYPE_CHECKING:
    from src.config import Settings
    from src.metrics.cache.store import CacheStore
    from src.metrics.config_loader import SyncConfig

__all__ = [
    "AnkiClient",
    "AtCoderContestClient",
    "AtCoderSubmissionClient",
    "TaskTimerClient",
    "TypeQuickerClient",
    "ZoteroClient",
    "CLIENT_REGISTRY",
    "get_client",
    "settings_for",
    "build_caching_clients",
]

# Registry: SOURCE_ID → client class
CLIENT_REGISTRY: dict[str, type[RemoteClient]] = {
    cls.SOURCE_ID: cls
    for cls in (
        TypeQuickerClient,
        AtCoderContestClient,
        AtCoderSubmissionClient,
        AnkiClient,
        ZoteroClient,
        TaskTimerClient,
    )
}

# SOURCE_ID → (credential key → Settings field, option key → Settings field)
_SETTINGS_MAP: dict[str, tuple[dict[str, str], dict[str, str]]] = {
    "typequicker": ({"username": "typequicker_username"}, {"base_url": "typequicker_base_url"}),
    "atcoder": ({"username": "atcoder_username"}, {}),
    "atcoder_submissions": ({"username": "atcoder_username"}, {}),
    "anki": ({"host": "anki_host"}, {"port": "anki_port", "decks": "anki_decks"}),
    "zotero": (
        {"api_key": "zotero_api_key", "user_id": "zotero_user_id"},
        {"base_url": "zotero_base_url"},
    ),
    "tasks": ({}, {}),
}


def get_client(source_id: str) -> type[RemoteClient]:
    """Return the client class for a given provider slug.

    Raises:
        KeyError: If the source_id is not registered.
    """
    if source_id not in CLIENT_REGISTRY:
        raise KeyError(
            f"No client registered for provider '{source_id}'. "
            f"Available: {list(CLIENT_REGISTRY)}"
        )
    return CLIENT_REGISTRY[source_id]


def settings_for(source_id: str, settings: Settings) -> DataSourceSettings | None:
    """Build the DataSourceSettings bag for one provider from app settings.

    Returns:
        The settings, or None when a required credential is empty (the
        provider then stays unconfigured).
    """
    credential_map, option_map = _SETTINGS_MAP.get(source_id, ({}, {}))
    credentials = {
        key: str(getattr(settings, field_name, "") or "").strip()
        for key, field_name in credential_map.items()
    }
    if any(not value for value in credentials.values()):
        return None
    options = {
        key: str(getattr(settings, field_name, "") or "")
        for key, field_name in option_map.items()
    }
    return DataSourceSettings(provider=source_id, credentials=credentials, options=options)


def build_caching_clients(
    store: CacheStore,
    config: SyncConfig,
    source_ids: list[str] | None = None,
) -> list[CachingClient]:
    """Instantiate one CachingClient per enabled provider, tuned from ``config``."""
    clients: list[CachingClient] = []
    for source_id in source_ids or list(CLIENT_REGISTRY):
        tuning = config.provider(source_id)
        if not tuning.enabled:
            continue
        remote = get_client(source_id)()
        clients.append(
            CachingClient(
                remote,
                store,
                volatile_days=tuning.volatile_days,
                fetch_timeout=tuning.fetch_timeout_seconds,
            )
        )
    return clients
