"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    database_auto_create: bool = False  # Create tables on startup (dev only)

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 3000
    api_title: str = "Prompt Credits API"
    api_version: str = "0.1.0"
    api_description: str = "Credit accounting and tier gating for prompt rewriting"

    # Identity provider (Supabase-compatible auth endpoint)
    supabase_url: str = ""
    supabase_anon_key: str = ""
    identity_timeout_seconds: float = 10.0

    # Language model provider
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 60.0

    # Shared secret for the admin credit top-up endpoint
    admin_secret: str = ""

    # Credit policy
    anonymous_allowance: int = 5
    daily_allowance: int = 3
    signup_bonus: int = 10
    daily_window_hours: int = 24

    # Anonymous pool bounds
    anonymous_pool_max_entries: int = 50_000
    anonymous_pool_ttl_seconds: int = 7 * 24 * 3600

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "prompt-credits-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if self.daily_allowance <= 0:
            errors.append(f"DAILY_ALLOWANCE must be positive, got: {self.daily_allowance}")
        if self.anonymous_allowance < 0:
            errors.append(
                f"ANONYMOUS_ALLOWANCE cannot be negative, got: {self.anonymous_allowance}"
            )
        if self.anonymous_pool_max_entries <= 0:
            errors.append("ANONYMOUS_POOL_MAX_ENTRIES must be positive")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url

    @property
    def identity_configured(self) -> bool:
        """True when the identity provider endpoint is configured."""
        return bool(self.supabase_url and self.supabase_anon_key)


# Global settings instance - validates at import time
settings = Settings()
