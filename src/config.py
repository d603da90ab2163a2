"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables (or .env file).

    Sync tuning (windows, timeouts, retention) lives in
    ``src/metrics/sync_config.yaml`` instead.
    """

    # --- App ---
    app_name: str = "GoalSync"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Database ---
    database_url: str = ""  # empty = in-memory cache backend
    database_pool_min: int = 1
    database_pool_max: int = 10

    # --- TypeQuicker ---
    typequicker_username: str = ""
    typequicker_base_url: str = ""

    # --- AtCoder ---
    atcoder_username: str = ""

    # --- Anki (AnkiConnect) ---
    anki_host: str = "127.0.0.1"  # empty = Anki sync disabled
    anki_port: int = 8765
    anki_decks: str = ""  # comma separated; empty = all decks

    # --- Zotero ---
    zotero_api_key: str = ""
    zotero_user_id: str = ""
    zotero_base_url: str = ""

    # --- Sync ---
    sync_window_days: int | None = None  # startup sync window; None = per-provider config
    sync_on_startup: bool = False

    # --- CORS ---
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
