from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./feedrelay.db"

    # Server
    API_PORT: int = 8001
    LOG_LEVEL: str = "INFO"

    # Files
    DESTINATIONS_FILE: str = "config.json"
    LEGACY_CACHE_FILE: str = "cache.json"

    # Scheduling
    TICK_SECONDS: float = 5.0
    MAX_CONCURRENT_FETCHES: int = 3
    REQUEST_DELAY: float = 0.5
    REQUEST_DELAY_SLOW: float = 2.0
    REQUEST_JITTER: float = 0.5
    SLOW_HOSTS: str = "youtube.com"

    # Fetching
    HTTP_TIMEOUT: float = 15.0
    FETCH_ATTEMPTS: int = 4
    RETRY_DELAY_MIN: float = 0.4
    RETRY_DELAY_MAX: float = 1.0
    PROXY_URL: str | None = None
    USER_AGENTS: list[str] = [
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:122.0) Gecko/20100101 Firefox/122.0",
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120 Safari/537.36",
        "FeedFetcher-Google",
    ]

    # Per-host cooldowns (seconds)
    COOLDOWN_PERMISSION: float = 600.0
    COOLDOWN_RATE_LIMIT: float = 120.0
    COOLDOWN_GATEWAY: float = 120.0
    COOLDOWN_SERVER: float = 60.0
    COOLDOWN_CLIENT: float = 300.0
    COOLDOWN_NETWORK: float = 30.0
    COOLDOWN_CEILING: float = 3600.0
    COOLDOWN_JITTER: float = 1.0

    # Caches
    SEEN_MAX_IDS: int = 500
    CONDITIONAL_FLUSH_SECONDS: float = 30.0

    # Normalisation
    SNIPPET_MAX_LENGTH: int = 500

    # Discord
    DISCORD_TOKEN: str = ""
    DISCORD_MESSAGE_LIMIT: int = 50

    # FreshRSS (Fever API)
    FRESHRSS_URL: str = ""
    FRESHRSS_API_KEY: str = ""
    FRESHRSS_USERNAME: str = ""
    FRESHRSS_PASSWORD: str = ""

    # Delivery
    DRY_RUN: bool = False
    WEBHOOK_TIMEOUT: float = 15.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
