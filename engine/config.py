"""
Engine Configuration

Load settings from environment variables with validation.
"""

from functools import lru_cache
from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings from environment variables."""

    # Environment
    environment: str = "development"
    debug: bool = True

    # MongoDB
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "playarr"

    # File cache for upstream responses
    cache_dir: str = "./cache"

    # TMDB (fallbacks when the settings collection has no value)
    tmdb_api_url: str = "https://api.themoviedb.org/3"
    tmdb_read_access_token: Optional[str] = None
    tmdb_concurrent: int = 40
    tmdb_duration_seconds: float = 1.0

    # Upstream HTTP
    http_timeout_seconds: float = 30.0

    # Pipeline
    progress_interval_seconds: float = 30.0
    ignored_retry_hours: float = 24.0  # Ignored titles older than this are re-examined

    # Scheduler
    scheduler_enabled: bool = True

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()
