# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Device response models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class DeviceResponse(BaseModel):
    """Device slot as returned to callers."""

    id: str
    hub_id: str
    device_code: str
    name: str | None = None
    status: str
    registered_at: datetime | None = None
    last_seen: datetime | None = None
    device_info: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class HubDeviceStats(BaseModel):
    """Device counts for one hub."""

    total: int
    active: int
    pending: int
    inactive: int


class DeviceCodeStats(BaseModel):
    """Registry-wide device code usage."""

    total_codes: int
    active_devices: int
    pending_devices: int
    inactive_devices: int
    code_collision_rate: float
