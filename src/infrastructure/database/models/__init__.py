# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy models for the hub registry."""

from src.infrastructure.database.models.base import Base
from src.infrastructure.database.models.device import Device
from src.infrastructure.database.models.edge_hub import EdgeHub
from src.infrastructure.database.models.student import Student

__all__ = [
    "Base",
    "EdgeHub",
    "Student",
    "Device",
]
