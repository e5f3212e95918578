"""Configuration management for BatchForge."""
from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required variables must be set, optional ones have defaults.
    """

    # Application
    APP_NAME: str = "BatchForge"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Database
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_ECHO: bool = False

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    QUEUE_NAME: str = "executions"

    # API
    API_V1_PREFIX: str = "/api/v1"

    # Credential decryption (64 hex characters = 32 byte AES-256 key)
    ENCRYPTION_KEY: Optional[str] = None

    # Generation provider
    GENERATION_API_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    DEFAULT_MODEL: str = "gemini-2.5-flash-image"
    ALLOWED_MODELS: List[str] = [
        "gemini-2.5-flash-image",
        "gemini-3-pro-image-preview",
    ]

    # Item retry policy
    ATTEMPT_TIMEOUT_SECONDS: float = 60.0
    MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 2.0
    RETRY_MAX_DELAY_SECONDS: float = 30.0

    # Dispatching
    ITEM_CONCURRENCY: int = 1  # 1 = serial
    RATE_LIMIT_REQUESTS: int = 15  # Requests per window, per credential and model family
    RATE_LIMIT_WINDOW_SECONDS: float = 60.0
    RATE_LIMIT_COOLDOWN_SECONDS: float = 10.0  # Used when a 429 carries no Retry-After

    # Artifact storage
    ARTIFACT_DIR: str = "./artifacts"
    ARTIFACT_BASE_URL: str = "http://localhost:8000/artifacts"

    # Polling client
    POLL_INTERVAL_SECONDS: float = 2.5

    # Worker
    WORKER_POLL_INTERVAL: float = 1.0
    WORKER_MAX_CONCURRENT_EXECUTIONS: int = 4
    RECLAIM_INTERVAL_SECONDS: float = 60.0  # Sweep for executions lost by a crashed worker
    STALE_EXECUTION_SECONDS: float = 600.0  # Unfinished executions untouched this long are re-queued

    # Submission
    MAX_ITEMS_PER_BATCH: int = 100
    COST_PER_IMAGE_USD: float = 0.039  # Flash models
    PRO_COST_PER_IMAGE_USD: float = 0.134

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Singleton settings instance
    """
    return Settings()
