# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Access governance domain services.

This module provides:
- The static (resource, action) access rule table
- Access decisions and enforcement with COPPA/GDPR policy checks
- The bounded in-memory audit log

Exports:
    AccessContext: Caller descriptor built per request.
    AccessControlService: Rule evaluation and compliance policies.
    AuditLogger: Append-only audit buffer with queries and reports.
"""

from src.domains.governance.access_control import (
    AccessControlError,
    AccessControlService,
    AccessDecision,
    AccessDeniedError,
    AgeValidation,
    RetentionDecision,
)
from src.domains.governance.audit_logger import (
    AuditLogEntry,
    AuditLogFilters,
    AuditLogger,
    AuditLogPage,
    ComplianceReport,
)
from src.domains.governance.rules import (
    ACCESS_RULES,
    AccessContext,
    AccessRule,
    ComplianceFlag,
    UserType,
)

__all__ = [
    "ACCESS_RULES",
    "AccessContext",
    "AccessRule",
    "ComplianceFlag",
    "UserType",
    "AccessControlService",
    "AccessControlError",
    "AccessDeniedError",
    "AccessDecision",
    "AgeValidation",
    "RetentionDecision",
    "AuditLogger",
    "AuditLogEntry",
    "AuditLogFilters",
    "AuditLogPage",
    "ComplianceReport",
]
