"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # SportMonks (upstream sports data provider)
    SPORTMONKS_API_TOKEN: str = ""
    SPORTMONKS_FOOTBALL_BASE_URL: str = "https://api.sportmonks.com/v3/football"
    SPORTMONKS_CORE_BASE_URL: str = "https://api.sportmonks.com/v3/core"
    SPORTMONKS_ODDS_BASE_URL: str = "https://api.sportmonks.com/v3/odds"
    SPORTMONKS_AUTH_MODE: str = "query"  # "query" (api_token=...) | "header" (Authorization)
    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    PROVIDER_MAX_RETRIES: int = 3
    PROVIDER_PER_PAGE: int = 50

    # ═══════════════════════════════════════════════════════════════
    # Jobs: scheduler + advisory locks
    # ═══════════════════════════════════════════════════════════════

    JOBS_SCHEDULER_ENABLED: bool = True  # Kill-switch for cron ticks in this process
    JOB_LOCK_TIMEOUT_SECONDS: float = 2 * 60 * 60  # Bound on caller wait (lock is held until body finishes)
    JOB_RUNS_RETENTION_DAYS: int = 30
    SCHEDULER_MISFIRE_GRACE_SECONDS: int = 60

    # ═══════════════════════════════════════════════════════════════
    # ETL seeding
    # ═══════════════════════════════════════════════════════════════

    SEED_CHUNK_SIZE: int = 8  # Concurrent records per chunk
    SEED_VERSION: str = "v1"
    SEED_ERROR_MESSAGE_MAX: int = 500
    SEED_META_ERROR_MESSAGE_MAX: int = 200

    # Observability
    LOG_LEVEL: str = "INFO"
    METRICS_PORT: int = 0  # 0 = don't expose /metrics from the worker
    SENTRY_DSN: str = ""
    SENTRY_ENABLED: bool = True
    SENTRY_TRACES_SAMPLE_RATE: float = 0.05
    SENTRY_ENV: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
