# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Student request/response models.

Responses carry decrypted names; they must never be logged without
passing through sanitize_for_logging().
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

StudentStatus = Literal["active", "inactive"]


class StudentCreateRequest(BaseModel):
    """Data for a new student."""

    first_name: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)
    grade: str | None = Field(default=None, max_length=20)
    age: int | None = None
    metadata: dict[str, Any] | None = None


class StudentUpdateRequest(BaseModel):
    """Partial update; only fields that are set are applied."""

    first_name: str | None = Field(default=None, max_length=255)
    last_name: str | None = Field(default=None, max_length=255)
    grade: str | None = Field(default=None, max_length=20)
    age: int | None = None
    metadata: dict[str, Any] | None = None
    status: StudentStatus | None = None


class StudentResponse(BaseModel):
    """Student with PII decrypted."""

    id: str
    hub_id: str
    student_code: str
    first_name: str | None = None
    last_name: str | None = None
    grade: str | None = None
    age: int | None = None
    metadata: dict[str, Any] | None = None
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class StudentStats(BaseModel):
    """Registry-wide student counts."""

    total_students: int
    active_students: int
    inactive_students: int
    average_age: float
    grade_distribution: dict[str, int] = Field(default_factory=dict)


class StudentExport(BaseModel):
    """GDPR Article 20 export payload."""

    student: StudentResponse
    exported_at: datetime
    compliance_note: str


class StudentDeletionResult(BaseModel):
    """Outcome of a GDPR erasure."""

    deleted: bool
    message: str
