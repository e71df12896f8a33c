"""
Queue configuration using Pydantic Settings.
Loads configuration from BALIN_* environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from balin.constants import (
    DEFAULT_LOCK_MAX_AGE_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_PRIORITY,
)


class Settings(BaseSettings):
    """Queue settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BALIN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/balin/balin_queue.sqlite"
    database_pool_size: int = 10
    database_max_overflow: int = 20
    sqlite_busy_timeout_seconds: float = 30.0

    # Queue behaviour
    claim_max_retries: int = 5
    default_priority: int = DEFAULT_PRIORITY
    default_max_attempts: int = DEFAULT_MAX_ATTEMPTS
    lock_max_age_seconds: int = DEFAULT_LOCK_MAX_AGE_SECONDS

    # Worker Configuration
    worker_id: str | None = None
    worker_task_name: str | None = None
    worker_concurrency: int = 1
    worker_poll_interval_seconds: float = 1.0
    worker_retry_delay_seconds: float = 0.0
    # Modules imported at worker startup so their handlers get registered
    worker_imports: list[str] = []

    # Reaper Configuration
    reaper_interval_seconds: int = 60

    # Observability
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "balin"
    prometheus_port: int | None = None
    log_level: str = "INFO"
    log_format: str = "json"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
