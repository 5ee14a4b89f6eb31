"""
Configuration for the automation engine.

Every section can be overridden through environment variables using its
prefix, e.g. ``ENGINE_MAX_STEPS_PER_RUN=1000`` or ``SCHEDULER_TICK_INTERVAL_S=1``.
"""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeactivationPolicy(str, Enum):
    """What happens to pending runs when an automation is switched off."""

    CANCEL = "cancel"
    DRAIN = "drain"


class EngineConfig(BaseSettings):
    """Interpreter and executor settings."""

    model_config = SettingsConfigDict(env_prefix="ENGINE_")

    max_steps_per_run: int = 500
    collaborator_timeout_s: float = 15.0
    deactivation_policy: DeactivationPolicy = DeactivationPolicy.CANCEL
    history_limit: int = 200
    condition_max_length: int = 1000
    condition_max_depth: int = 32
    max_nodes_per_automation: int = 200


class RetryConfig(BaseSettings):
    """Backoff for idempotent collaborator calls."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = 3
    base_delay_s: float = 0.5
    max_delay_s: float = 10.0
    multiplier: float = 2.0


class SchedulerConfig(BaseSettings):
    """Run scheduler and tick worker settings."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    enabled: bool = True
    tick_interval_s: float = 5.0
    batch_size: int = 100
    max_concurrent_runs: int = 20
    claim_ttl_s: float = 300.0
    message_dedup_window_s: int = 300


class DatabaseConfig(BaseSettings):
    """Run and automation persistence."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    url: str = "sqlite+aiosqlite:///./autoflow.db"
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10


class PlatformConfig(BaseSettings):
    """Platform REST API used by the HTTP collaborators."""

    model_config = SettingsConfigDict(env_prefix="PLATFORM_")

    api_base_url: str = "http://localhost:3000/api"
    api_token: Optional[str] = None


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Service
    service_name: str = "autoflow"
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 8090

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Sub-configurations
    engine: EngineConfig = Field(default_factory=EngineConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    platform: PlatformConfig = Field(default_factory=PlatformConfig)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
