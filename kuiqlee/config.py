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


MIN_JWT_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 10
    database_max_overflow: int = 5
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Kuiqlee API"
    api_version: str = "0.1.0"
    api_description: str = "Accounts, usage metering and subscriptions for the Kuiqlee extension"
    cors_allow_origins: str = "*"  # Comma-separated

    # Credentials
    jwt_secret: str = ""  # Generate with: openssl rand -hex 32
    jwt_algorithm: str = "HS256"
    token_ttl_days: int = 30

    # Passwords (Argon2id)
    password_min_length: int = 8
    argon2_time_cost: int = 3
    argon2_memory_cost: int = 65536  # KiB

    # Free tier
    free_tier_domain_limit: int = 3

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = False
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "kuiqlee-api"

    # Payment Provider - Stripe
    stripe_api_key: str = ""  # sk_test_... or sk_live_...
    stripe_webhook_secret: str = ""  # whsec_...
    stripe_price_monthly: str = ""
    stripe_price_annual: str = ""
    landing_page_url: str = "https://kuiqlee.app"

    # Model API
    model_api_key: str = ""
    model_api_url: str = "https://api.anthropic.com/v1/messages"
    model_api_version: str = "2023-06-01"
    model_name: str = "claude-3-5-sonnet-20241022"
    model_max_tokens: int = 8192
    model_temperature: float = 0.3
    model_timeout_seconds: float = 60.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        protected_namespaces=("settings_",),
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

        if not self.jwt_secret:
            errors.append("JWT_SECRET is required but empty or missing")
        elif len(self.jwt_secret) < MIN_JWT_SECRET_LENGTH:
            errors.append(f"JWT_SECRET must be at least {MIN_JWT_SECRET_LENGTH} characters")

        if self.token_ttl_days <= 0:
            errors.append("TOKEN_TTL_DAYS must be positive")

        if self.free_tier_domain_limit < 0:
            errors.append("FREE_TIER_DOMAIN_LIMIT cannot be negative")

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
    def allowed_origins(self) -> list[str]:
        """CORS origins as a list."""
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]

    @property
    def stripe_configured(self) -> bool:
        """True when both Stripe secrets are present."""
        return bool(self.stripe_api_key and self.stripe_webhook_secret)


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
