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
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Formfold API"
    api_version: str = "0.1.0"
    api_description: str = "Form collection backend with metered submissions"

    # Security - HMAC secret for app secret keys (rotating it invalidates every key)
    secret: str = ""

    # Submission endpoint
    max_submission_bytes: int = 20 * 1024 * 1024  # 20 MiB
    default_success_url: str = "https://formfold.app/forms/success"
    default_failure_url: str = "https://formfold.app/forms/failure"

    # Plan limits (submissions per billing period)
    free_plan_submission_limit: int = 100
    launch_plan_submission_limit: int = 1000
    subscription_cycle_months: int = 1

    # Sessions
    session_lifetime_days: int = 30
    session_renewal_window_days: int = 15

    # Push notifications (Firebase Cloud Messaging)
    notifications_enabled: bool = True
    firebase_credentials_path: str = ""  # Empty = application default credentials

    # Run Alembic migrations in the lifespan (otherwise a deploy step)
    run_migrations_on_startup: bool = False

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "formfold-api"

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
        Secret keys cannot be verified without SECRET, so it is as critical
        as the database URL.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not self.secret:
            errors.append("SECRET is required to hash app secret keys")

        if self.max_submission_bytes <= 0:
            errors.append("MAX_SUBMISSION_BYTES must be positive")

        if self.subscription_cycle_months < 1:
            errors.append("SUBSCRIPTION_CYCLE_MONTHS must be at least 1")

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


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
