"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./rentease.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    environment: str = Field(
        default="development",
        description="Deployment environment; stack traces are only returned outside production.",
    )
    jwt_secret: str = Field(default="super-secret", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60 * 24 * 7, description="Token lifetime in minutes")
    email_token_expire_hours: int = Field(default=24, description="Lifetime of email verification links")
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:3001"],
        description="Allowed CORS origins",
    )
    default_rate_limit: str = Field(default="60/minute", description="Global rate limiting rule")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")

    upload_dir: str = Field(default="./storage/properties", description="Directory holding listing pictures")
    max_pictures: int = Field(default=10, description="Maximum pictures accepted per upload request")
    max_upload_bytes: int = Field(default=5 * 1024 * 1024, description="Maximum size of a single picture")
    stats_cache_ttl: int = Field(default=60, description="TTL (s) for cached listing statistics")
    log_dir: str = Field(default="./logs", description="Directory for per-service audit logs")

    smtp_host: str = Field(default="", description="SMTP server; empty disables outbound email")
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = Field(default="RentEase Support <no-reply@rentease.local>")
    backend_url: str = Field(default="http://localhost:8001", description="Public URL of the users service")

    users_service_port: int = 8001
    properties_service_port: int = 8002
    bookings_service_port: int = 8003

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
