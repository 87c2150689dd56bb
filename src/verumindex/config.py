"""Configuration management using Pydantic Settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Indexer settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VERUM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Kaspa REST API
    # Unset means the public API for `network`.
    kaspa_api_url: str | None = None
    network: str = "mainnet"
    request_timeout_seconds: float = 10.0
    fetch_max_attempts: int = 3

    # Chain traversal
    discovery_batch_size: int = 50
    discovery_max_batches: int = 20
    chain_default_max_transactions: int = 50
    chain_use_preloaded: bool = True

    # Caching
    cache_enabled: bool = True
    engagement_cache_ttl_seconds: float = 30.0
    story_cache_ttl_seconds: float = 120.0
    user_cache_ttl_seconds: float = 60.0
    feed_cache_ttl_seconds: float = 30.0
    fetcher_cache_ttl_seconds: float = 30.0
    fetcher_recent_cache_ttl_seconds: float = 10.0

    # Engagement window scan
    engagement_max_search_depth: int = 2000
    recent_activity_window_seconds: int = 24 * 60 * 60

    # Stories
    story_search_limit: int = 200
    story_timestamp_tolerance_seconds: int = 60


settings = Settings()
