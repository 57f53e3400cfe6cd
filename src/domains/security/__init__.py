# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Security domain services.

This module provides:
- Field encryption for student PII (AES-256-GCM)
- Salted scrypt hashing
- Unique, human-friendly device and student codes

Exports:
    SecurityService: Encryption, hashing and random code primitives.
    CodeGenerator: Collision-retrying unique code allocation.
    CodeKind: Device or student code.
"""

from src.domains.security.codes import (
    CodeConflictError,
    CodeGenerationError,
    CodeGenerationExhaustedError,
    CodeGenerator,
    CodeKind,
    validate_code_format,
)
from src.domains.security.encryption import (
    CODE_ALPHABET,
    DecryptionError,
    EncryptionError,
    EncryptionSetupReport,
    SecurityError,
    SecurityService,
    sanitize_for_logging,
)

__all__ = [
    "SecurityService",
    "SecurityError",
    "EncryptionError",
    "DecryptionError",
    "EncryptionSetupReport",
    "sanitize_for_logging",
    "CODE_ALPHABET",
    "CodeGenerator",
    "CodeKind",
    "CodeGenerationError",
    "CodeGenerationExhaustedError",
    "CodeConflictError",
    "validate_code_format",
]
