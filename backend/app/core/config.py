"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly. The kitchen knobs defined here are
only the *defaults*: the live values are stored in the ``system_settings``
table and re-read on every scheduler tick.
"""

from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database
    database_url: str = "sqlite:///./kitchen_queue.db"

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True

    # Operating day boundaries are computed in this timezone
    timezone: str = "UTC"

    # ==========================================================================
    # Kitchen scheduler
    # ==========================================================================
    kitchen_scheduler_enabled: bool = True
    default_max_concurrent_preparations: int = 8
    default_tick_interval_seconds: int = 30
    default_base_preparation_duration_minutes: int = 15
    tuning_every_ticks: int = 10  # delay predictor (5 min at 30s ticks)
    learning_every_ticks: int = 120  # duration learner + capacity adjuster (1 h)

    @field_validator(
        "default_max_concurrent_preparations",
        "default_tick_interval_seconds",
        "default_base_preparation_duration_minutes",
        "tuning_every_ticks",
        "learning_every_ticks",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
