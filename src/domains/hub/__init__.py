# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Edge hub registry service."""

from src.domains.hub.service import (
    HubExistsError,
    HubNotFoundError,
    HubService,
    HubServiceError,
)

__all__ = [
    "HubService",
    "HubServiceError",
    "HubNotFoundError",
    "HubExistsError",
]
