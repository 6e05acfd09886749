"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Record cache settings loaded from environment variables."""

    # TTLs used when a fetcher is attached without one (seconds).
    # 0 means every entry is always stale.
    on_demand_ttl_seconds: float = 300
    bulk_ttl_seconds: float = 3600

    # Background sweep cadence
    sweep_interval_seconds: float = 60

    # Redis backend
    redis_url: str = "redis://localhost:6379/0"
    redis_hash_key: str = "record_cache"
    redis_socket_timeout_seconds: float = 2.0

    # SQL backend
    database_url: str = "sqlite:///./record_cache.db"
    sql_table_name: str = "cache_entries"

    # HTTP fetch strategy
    http_timeout_seconds: float = 10.0
    http_base_url: Optional[str] = None

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "RECORD_CACHE_"
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
