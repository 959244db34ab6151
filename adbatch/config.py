"""
Application configuration.

This module provides centralized configuration management using Pydantic.
Nested groups can be overridden from the environment with a double underscore,
e.g. ``BATCH__CONCURRENT_LIMIT=8`` or ``REDIS__URL=redis://cache:6379``.
"""

from typing import Literal, Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class RedisConfig(BaseModel):
    """Redis configuration."""
    url: str = Field(default="redis://localhost:6379")
    password: Optional[str] = Field(default=None)
    prefix: str = Field(default="adbatch:")

    # Key prefixes
    batch_prefix: str = "batch:"
    index_key: str = "batches"
    claim_prefix: str = "claim:"

    # Seconds before an abandoned run claim expires
    run_claim_ttl: int = Field(default=3600, ge=1)

class StoreConfig(BaseModel):
    """Batch store configuration."""
    backend: Literal["memory", "redis"] = Field(default="memory")

class BatchConfig(BaseModel):
    """Batch operation configuration."""
    max_size: int = Field(default=1000, ge=1)
    concurrent_limit: int = Field(default=5, ge=1)
    rollback_window_days: int = Field(default=7, ge=0)

    # Item validation limits
    min_bid: float = Field(default=0.02, gt=0)
    max_bid: float = Field(default=100.0, gt=0)
    max_bid_change_percent: float = Field(default=500.0, gt=0)
    max_negative_keyword_length: int = Field(default=500, ge=1)

class RetryConfig(BaseModel):
    """Retry behaviour for transient remote failures."""
    max_retries: int = Field(default=3, ge=1)
    base_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=10.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    # Seconds allowed for one remote call attempt
    timeout: float = Field(default=30.0, gt=0)

class RemoteConfig(BaseModel):
    """Remote advertising platform configuration."""
    max_requests_per_second: int = Field(default=10, ge=1)

class ServerConfig(BaseModel):
    """Server configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    debug: bool = Field(default=False)
    cors_origins: list[str] = Field(default=["*"])

class Settings(BaseSettings):
    """Application settings."""
    redis: RedisConfig = RedisConfig()
    store: StoreConfig = StoreConfig()
    batch: BatchConfig = BatchConfig()
    retry: RetryConfig = RetryConfig()
    remote: RemoteConfig = RemoteConfig()
    server: ServerConfig = ServerConfig()

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

# Create global settings instance
settings = Settings()

# Export individual configs for convenience
redis_config = settings.redis
store_config = settings.store
batch_config = settings.batch
retry_config = settings.retry
remote_config = settings.remote
server_config = settings.server
