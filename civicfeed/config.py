"""
Application configuration using environment variables.
"""
import os
import secrets
from functools import lru_cache
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "CivicFeed Core"
    debug: bool = False
    environment: str = "development"

    # Security
    secret_key: str = os.getenv("SECRET_KEY", secrets.token_urlsafe(32))
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60  # 1 hour

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./civicfeed.db")

    # CORS
    cors_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # Feed (slot roll)
    feed_default_slots: int = 15
    feed_max_slots: int = 50
    feed_logged_in_random_threshold: int = 10     # 0-9 = random
    feed_logged_in_trending_threshold: int = 20   # 10-19 = trending, 20-99 = personalized
    feed_logged_out_random_threshold: int = 30    # 0-29 = random, 30-99 = trending
    feed_candidate_window_days: int = 30
    feed_random_pool_size: int = 200
    feed_trending_pool_size: int = 300
    feed_personalized_pool_size: int = 150

    # Encoding queue / worker
    encoding_max_concurrent: int = 2
    encoding_max_attempts: int = 3
    encoding_default_priority: int = 10
    encoding_poll_interval: float = 5.0          # seconds
    encoding_stats_interval: float = 60.0        # seconds
    encoding_cleanup_interval: float = 3600.0    # seconds
    encoding_job_retention_hours: int = 24
    encoding_orphan_window_hours: int = 24
    encoding_retry_backoff_base: float = 5.0     # seconds
    encoding_retry_backoff_max: float = 300.0    # seconds
    encoding_phase_timeout: int = 600            # seconds
    encoding_shutdown_timeout: float = 60.0      # seconds
    encoding_two_phase: bool = True
    encoding_mode: str = "auto"                  # auto, two_phase, legacy, passthrough, cloud
    encoding_worker_enabled: bool = True

    # Media
    ffmpeg_path: str = "ffmpeg"
    blob_root: str = os.getenv("CIVICFEED_BLOB_ROOT", "./data/blobs")
    media_base_url: str = "/media"

    # Collaborators
    moderation_url: str = ""
    moderation_timeout: int = 30
    cloud_encoding_url: str = ""
    cloud_encoding_api_key: str = ""
    cloud_encoding_callback_url: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
