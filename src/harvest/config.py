"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class StorageBackend(str, Enum):
    redis = "redis"
    memory = "memory"


class Settings(BaseSettings):
    """Settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_NAMESPACE: str = ""

    # Storage backend selection
    STORAGE_BACKEND: StorageBackend = StorageBackend.redis

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Reserved keys and channels
    CRM_DATA_KEY: str = "crm_extracted_data"
    SYNC_LOCK_KEY: str = "sync_lock_timestamp"
    STORAGE_CHANNEL: str = "crm_storage_updates"

    # Lock and retry policy
    LOCK_TIMEOUT_MS: int = 30_000
    RETRY_ATTEMPTS: int = 3
    RETRY_DELAY_MS: int = 1_000

    # Route delete/clear through the sync lock as well
    GUARD_DESTRUCTIVE_WRITES: bool = False


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
