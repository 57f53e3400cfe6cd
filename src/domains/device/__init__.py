# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Device registry service."""

from src.domains.device.service import (
    DeviceLimitExceededError,
    DeviceNotFoundError,
    DeviceService,
    DeviceServiceError,
    DeviceStateError,
)

__all__ = [
    "DeviceService",
    "DeviceServiceError",
    "DeviceNotFoundError",
    "DeviceLimitExceededError",
    "DeviceStateError",
]
