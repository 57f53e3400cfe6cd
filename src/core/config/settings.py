# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

This module provides centralized configuration management for the EdgeHub
governance core. Settings are loaded from environment variables with
sensible defaults.

The Settings class is the main entry point and aggregates all subsettings.
A singleton instance is provided via get_settings() for dependency injection.

Example:
    >>> from src.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> print(settings.environment)
    'development'
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database configuration for the hub registry.

    The database stores:
    - Edge hub registry
    - Students (with encrypted PII columns)
    - Devices and their codes

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
    """

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        extra="ignore",
    )

    user: str = "edgehub"
    password: SecretStr = SecretStr("edgehub_password")
    host: str = "localhost"
    port: int = 5432
    database: str = "edgehub"
    pool_size: int = 10
    max_overflow: int = 20

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class SecuritySettings(BaseSettings):
    """Field encryption configuration.

    Attributes:
        encryption_key: Secret the AES key is derived from. When unset a
            development key is used and validate_encryption_setup() reports it.
        key_salt: Fixed salt for deriving the AES key from the secret.
        aad_label: Associated data bound to every student-data token.
    """

    model_config = SettingsConfigDict(
        extra="ignore",
    )

    encryption_key: SecretStr | None = Field(
        default=None,
        validation_alias="ENCRYPTION_KEY",
    )
    key_salt: str = Field(
        default="salt",
        validation_alias="ENCRYPTION_KEY_SALT",
    )
    aad_label: str = "student-data"


class AuditSettings(BaseSettings):
    """In-memory audit log configuration.

    Attributes:
        capacity: Maximum number of entries kept; oldest are evicted first.
        clear_after_days: Default age for clear_old_logs().
        recent_window_hours: Window used for compliance report samples.
        recent_sample_size: Maximum entries returned as recent events.
    """

    model_config = SettingsConfigDict(
        env_prefix="AUDIT_",
        extra="ignore",
    )

    capacity: int = Field(default=10_000, ge=1)
    clear_after_days: int = Field(default=90, ge=0)
    recent_window_hours: int = Field(default=24, ge=1)
    recent_sample_size: int = Field(default=50, ge=1)


class RegistrySettings(BaseSettings):
    """Per-hub limits for the student and device registries."""

    model_config = SettingsConfigDict(
        env_prefix="REGISTRY_",
        extra="ignore",
    )

    max_students_per_hub: int = 1000
    max_students_per_bulk: int = 100
    max_devices_per_hub: int = 500
    max_devices_per_request: int = 100


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        database: Database settings.
        security: Field encryption settings.
        audit: Audit log settings.
        registry: Student/device registry limits.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"

    # Subsettings - loaded with their own env prefixes
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    registry: RegistrySettings = Field(default_factory=RegistrySettings)

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this if you need to reload settings from environment.
    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
