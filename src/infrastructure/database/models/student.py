# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Student model with encrypted PII columns."""

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.infrastructure.database.models.base import Base, TimestampMixin, UUIDMixin


class Student(Base, UUIDMixin, TimestampMixin):
    """Student enrolled on a hub.

    Name and metadata columns hold ``iv:tag:ciphertext`` tokens; plaintext
    is never stored.
    """

    __tablename__ = "students"

    hub_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    student_code: Mapped[str] = mapped_column(String(8), unique=True, nullable=False)
    first_name_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_name_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    grade: Mapped[str | None] = mapped_column(String(20), nullable=True)
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
