"""Application settings using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Scheduler
    sync_enabled: bool = True
    sync_tick_interval_seconds: float = 60.0
    sync_error_backoff_seconds: float = 300.0  # after a failed cycle
    unhealthy_error_threshold: int = 5

    # Rate limiting (None = wait as long as it takes)
    rate_limit_max_wait_seconds: float | None = None

    # Fetch path
    single_flight_enabled: bool = True
    http_timeout_seconds: float = 15.0

    # Metrics ledger
    metrics_max_entries_per_source: int = 1000
    metrics_recent_errors: int = 10

    @field_validator(
        "sync_tick_interval_seconds",
        "sync_error_backoff_seconds",
        "http_timeout_seconds",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Interval must be positive")
        return v

    @field_validator("rate_limit_max_wait_seconds")
    @classmethod
    def validate_max_wait(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("Max wait must be positive when set")
        return v

    @field_validator("metrics_max_entries_per_source", "metrics_recent_errors")
    @classmethod
    def validate_bounds(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Metrics bounds must be at least 1")
        return v

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
