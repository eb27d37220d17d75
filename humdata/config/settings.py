"""Application settings using Pydantic Settings for environment-based configuration."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the humdata orchestrator.

    All settings can be overridden via environment variables prefixed with
    HUMDATA_ (e.g., HUMDATA_REQUEST_TIMEOUT_SECONDS=10).
    """

    model_config = SettingsConfigDict(
        env_prefix="HUMDATA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Source catalogue (None = bundled seed catalogue)
    sources_file: Path | None = None

    # Transport
    request_timeout_seconds: float = Field(default=30.0, gt=0.0, le=300.0)
    user_agent: str = "humdata-orchestrator/0.1.0"

    # Retry configuration
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    retry_max_delay_seconds: float = Field(default=8.0, ge=0.0, le=120.0)
    # Must stay below 1/3 so jittered delays remain strictly increasing
    retry_jitter_factor: float = Field(default=0.1, ge=0.0, lt=1 / 3)
    retry_budget_seconds: float = Field(
        default=30.0,
        ge=0.0,
        le=300.0,
        description="Total backoff allowed across one retry sequence",
    )

    # Cache
    cache_max_entries: int = Field(default=256, ge=1)

    # Background refresh
    refresh_interval_seconds: float = Field(default=300.0, gt=0.0)

    # Performance sampling
    performance_max_samples: int = Field(default=10_000, ge=1)
    performance_window_seconds: float = Field(default=3600.0, gt=0.0)

    # Observability
    metrics_port: int = 8000

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    Clear cache with get_settings.cache_clear() if needed.
    """
    return Settings()
