"""
Configuration settings for the Round Tracker API.
Uses pydantic-settings for type-safe environment variable management.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # Database
    DATABASE_URL: str = "postgresql://stats_user:changeme@db:5432/player_tracker"

    # Redis (Celery broker and result backend)
    REDIS_URL: str = "redis://redis:6379/0"

    # Logging
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8000",
    ]

    # Round detection: 'gap' (default) or 'time_bucket'
    ROUND_DETECTION_STRATEGY: str = "gap"

    # Round listing pagination
    DEFAULT_PAGE_SIZE: int = 100
    MAX_PAGE_SIZE: int = 500

    # Round backfill
    ROUND_BACKFILL_LOOKBACK_HOURS: int = 6
    ROUND_BACKFILL_INTERVAL_MINUTES: int = 15


# Global settings instance
settings = Settings()
