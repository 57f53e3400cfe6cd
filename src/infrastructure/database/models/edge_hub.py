# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""EdgeHub model: one offline classroom deployment."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database.models.base import Base, TimestampMixin, UUIDMixin


class EdgeHub(Base, UUIDMixin, TimestampMixin):
    """Registered edge hub. Students and devices reference ``hub_id``."""

    __tablename__ = "edge_hubs"

    hub_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
