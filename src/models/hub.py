# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Edge hub request/response models."""

from datetime import datetime

from pydantic import BaseModel, Field


class HubCreateRequest(BaseModel):
    """Data for registering an edge hub."""

    hub_id: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)


class HubResponse(BaseModel):
    """Registered edge hub."""

    id: str
    hub_id: str
    name: str
    status: str
    created_at: datetime | None = None
