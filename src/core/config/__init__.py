# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Configuration package for the EdgeHub governance core.

Settings are Pydantic-based and loaded from environment variables.

Example:
    >>> from src.core.config import get_settings
    >>> settings = get_settings()
    >>> print(settings.audit.capacity)
    10000
"""

from src.core.config.settings import (
    AuditSettings,
    DatabaseSettings,
    RegistrySettings,
    SecuritySettings,
    Settings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "clear_settings_cache",
    # Subsettings
    "DatabaseSettings",
    "SecuritySettings",
    "AuditSettings",
    "RegistrySettings",
]
