"""Application settings and configuration.

This module defines all configuration options for the Veil Stage service.
Settings are loaded from environment variables with sensible defaults.
"""

from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MAX_TIMER_HOURS = 2
MIN_TIMER_HOURS = 1
MAX_TIMER_HOURS = 24


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Veil Stage", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=True, alias="LOG_JSON")

    # Storage backend: "memory" (single process) or "shared" (Redis)
    storage_backend: str = Field(default="memory", alias="STORAGE_BACKEND")
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    store_key_prefix: str = Field(default="veil", alias="STORE_KEY_PREFIX")

    # Hidden-result sessions
    session_ttl_seconds: int = Field(default=600, alias="SESSION_TTL_SECONDS")
    session_sweep_seconds: float = Field(default=60.0, alias="SESSION_SWEEP_SECONDS")

    # Recurring timers
    max_timers_per_scope: int = Field(default=5, alias="MAX_TIMERS_PER_SCOPE")
    max_timer_hours: int = Field(default=DEFAULT_MAX_TIMER_HOURS, alias="MAX_TIMER_HOURS")

    # Per-actor admission control
    rate_limit_max_actions: int = Field(default=5, alias="RATE_LIMIT_MAX_ACTIONS")
    rate_limit_window_seconds: float = Field(default=10.0, alias="RATE_LIMIT_WINDOW_SECONDS")

    # Platform credentials for the HTTP transport and outbound delivery
    public_key: str | None = Field(default=None, alias="INTERACTIONS_PUBLIC_KEY")
    application_id: str | None = Field(default=None, alias="INTERACTIONS_APPLICATION_ID")
    bot_token: str | None = Field(default=None, alias="INTERACTIONS_BOT_TOKEN")
    api_base_url: str = Field(
        default="https://discord.com/api/v10",
        alias="INTERACTIONS_API_BASE_URL",
    )
    delivery_timeout_seconds: float = Field(default=10.0, alias="DELIVERY_TIMEOUT_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("max_timer_hours", mode="before")
    @classmethod
    def _fallback_timer_hours(cls, value: Any) -> int:
        """Fall back to the default cap when the configured value is unusable."""
        try:
            hours = int(value)
        except (TypeError, ValueError):
            return DEFAULT_MAX_TIMER_HOURS
        if hours < MIN_TIMER_HOURS or hours > MAX_TIMER_HOURS:
            return DEFAULT_MAX_TIMER_HOURS
        return hours

    @field_validator("storage_backend", mode="before")
    @classmethod
    def _normalize_backend(cls, value: Any) -> str:
        return str(value or "memory").strip().lower()

    @property
    def max_timer_lifetime_ms(self) -> int:
        """Return the timer lifetime cap in milliseconds."""
        return self.max_timer_hours * 60 * 60 * 1000

    @property
    def session_ttl_ms(self) -> int:
        """Return the hidden-result TTL in milliseconds."""
        return self.session_ttl_seconds * 1000


settings = Settings()
