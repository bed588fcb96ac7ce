"""Application configuration using Pydantic Settings v2.

Loads configuration from environment variables with .env file support.
All settings are validated at startup and available as typed attributes.
"""

from __future__ import annotations

import functools

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALERT_WEBHOOK_URL = "http://localhost:3000/api/alerts/webhook"


class Settings(BaseSettings):
    """PulseAlert settings.

    Configuration is loaded from environment variables.
    A .env file in the project root is also read if present.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────
    app_name: str = "PulseAlert"
    app_env: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # ── PostgreSQL ───────────────────────────────────────────────
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "pulsealert"
    postgres_user: str = "pulsealert"
    postgres_password: str = "pulsealert_dev_password"
    database_url: str | None = None

    # ── Alerting ─────────────────────────────────────────────────
    alert_webhook_url: str = DEFAULT_ALERT_WEBHOOK_URL
    alert_check_interval_seconds: float = Field(default=60.0, gt=0)
    alert_sampling_timeout_seconds: float = Field(default=10.0, gt=0)
    alert_delivery_timeout_seconds: float = Field(default=10.0, gt=0)
    alert_shutdown_grace_seconds: float = Field(default=5.0, ge=0)
    alert_history_limit: int = Field(default=100, ge=1)
    alert_active_retention_minutes: int = Field(default=60, ge=0)
    alert_default_rules_enabled: bool = True

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept log levels in any case."""
        return str(v).upper()

    @model_validator(mode="after")
    def build_derived_urls(self) -> Settings:
        """Build database_url from components if not set."""
        if not self.database_url:
            self.database_url = (
                f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
                f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            )
        if not self.alert_webhook_url:
            self.alert_webhook_url = DEFAULT_ALERT_WEBHOOK_URL
        return self


@functools.lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""
    return Settings()
