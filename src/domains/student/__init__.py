# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Student registry service.

Provides student CRUD with encrypted PII, student code login and the GDPR
export and erasure operations.
"""

from src.domains.student.service import (
    StudentLimitExceededError,
    StudentNotFoundError,
    StudentRetentionError,
    StudentService,
    StudentServiceError,
    StudentValidationError,
)

__all__ = [
    "StudentService",
    "StudentServiceError",
    "StudentNotFoundError",
    "StudentValidationError",
    "StudentLimitExceededError",
    "StudentRetentionError",
]
