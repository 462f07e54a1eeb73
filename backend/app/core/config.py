"""
Application configuration using Pydantic Settings.
Loads from environment variables and .env file.
"""

from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Beacon Telemetry"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"

    # API
    api_v1_prefix: str = "/api/v1"

    # Redis Cache
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "telemetry"
    postgres_password: str = "telemetry_dev"
    postgres_db: str = "telemetry"
    database_url: str = ""  # Full SQLAlchemy URL, overrides the postgres_* parts

    # Celery
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"

    # Geo lookup (ipapi.co compatible, {ip} is substituted)
    geo_lookup_url: str = "https://ipapi.co/{ip}/json/"
    geo_lookup_timeout: float = 3.0
    geo_cache_ttl: int = 86400
    geo_user_agent: str = "beacon-telemetry/1.0"

    # Delivery adapters
    tracking_base_url: str = "http://localhost:8000/api/v1/track"
    fallback_redirect_url: str = "https://propscholar.com"
    site_name: str = "PropScholar"
    site_url: str = "https://propscholar.com"
    tracking_deadline_seconds: float = 5.0

    # Rate limiting (JSON telemetry endpoints only)
    rate_limit_enabled: bool = True
    telemetry_rate_limit: str = "120/minute"

    # CORS
    frontend_url: str = "http://localhost:3000"

    @property
    def redis_url(self) -> str:
        """Build Redis connection URL."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def postgres_url(self) -> str:
        """Build the async database URL (DATABASE_URL wins when set)."""
        if self.database_url:
            return self.database_url
        return f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    def validate_production_settings(self) -> None:
        """
        Validate critical settings for production deployment.
        Raises ValueError if any critical settings are using default/insecure values.
        """
        if self.environment == "production":
            errors = []

            if not self.database_url and (
                not self.postgres_password or self.postgres_password == "telemetry_dev"
            ):
                errors.append("POSTGRES_PASSWORD must be set to a secure value in production")

            if not self.fallback_redirect_url.startswith("https://"):
                errors.append("FALLBACK_REDIRECT_URL must be an https URL in production")

            if self.tracking_deadline_seconds <= 0:
                errors.append("TRACKING_DEADLINE_SECONDS must be positive")

            if errors:
                raise ValueError(
                    "Production configuration validation failed:\n" +
                    "\n".join(f"  - {error}" for error in errors)
                )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
