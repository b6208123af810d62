"""Configuration management for RentalFlow."""

from __future__ import annotations

import logging
from functools import lru_cache
from urllib.parse import quote_plus

import structlog
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Full SQLAlchemy URL; takes precedence over the individual fields
    url: str = ""
    host: str = "localhost"
    port: int = 5432
    name: str = "rentalflow"
    user: str = "rentalflow"
    password: str = ""
    sslmode: str = "prefer"
    echo: bool = False
    pool_size: int = 5

    @property
    def connection_string(self) -> str:
        """Get SQLAlchemy connection string."""
        if self.url:
            return self.url

        user_encoded = quote_plus(self.user)
        password_encoded = quote_plus(self.password)

        return (
            f"postgresql+psycopg://{user_encoded}:{password_encoded}"
            f"@{self.host}:{self.port}/{self.name}"
            f"?sslmode={self.sslmode}"
        )


class LifecycleSettings(BaseSettings):
    """Order lifecycle business settings."""

    model_config = SettingsConfigDict(
        env_prefix="LIFECYCLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Days blocked before the event starts (prep + delivery)
    prep_buffer_days: int = 5
    # Days blocked after the event ends (return + inspection)
    return_buffer_days: int = 3


class NotificationSettings(BaseSettings):
    """Notification dispatch settings."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    worker_enabled: bool = True
    max_attempts: int = 5
    backoff_seconds: float = 2.0
    backoff_max_seconds: float = 60.0
    # QUEUED/RETRYING rows untouched this long are treated as stranded
    stale_after_seconds: float = 300.0


class UserSettings(BaseSettings):
    """Fallback actor identification for local development."""

    model_config = SettingsConfigDict(
        env_prefix="USER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # For local development - set USER_ID / USER_ROLE in .env
    id: str = ""
    role: str = ""
    # Comma separated company ids, "*" for every company
    companies: str = ""


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    @property
    def database(self) -> DatabaseSettings:
        """Get database settings."""
        return DatabaseSettings()

    @property
    def lifecycle(self) -> LifecycleSettings:
        """Get lifecycle business settings."""
        return LifecycleSettings()

    @property
    def notifications(self) -> NotificationSettings:
        """Get notification dispatch settings."""
        return NotificationSettings()

    @property
    def user(self) -> UserSettings:
        """Get user identification settings."""
        return UserSettings()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str | None = None) -> None:
    """Configure structlog to filter below the configured log level."""
    level_name = (level or get_settings().log_level).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        logger.warning("unknown_log_level", level=level_name)
        numeric_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=False,
    )
