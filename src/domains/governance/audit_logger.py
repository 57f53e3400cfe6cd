# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-memory audit log for governed operations.

This module provides the AuditLogger that:
- Records every access to or mutation of governed data
- Tags entries with compliance flags (COPPA, GDPR, ...)
- Keeps a bounded buffer (oldest entries evicted first)
- Answers filtered queries and compliance summaries

The buffer is a best-effort side channel, not a system of record. Recording
never raises into the governed operation.

Example:
    >>> audit = AuditLogger(capacity=10_000)
    >>> audit.log_student_data_access(context, action="view", student_id="s-1", success=True)
    >>> page = audit.get_audit_logs(AuditLogFilters(resource="student"))
    >>> page.total
    1
"""

import logging
import threading
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, NamedTuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.domains.governance.rules import AccessContext, ComplianceFlag, UserType
from src.domains.security.encryption import sanitize_for_logging
from src.utils.datetime import ensure_utc, utc_now
from src.utils.logging import get_logger

logger = logging.getLogger(__name__)
audit_log = get_logger("src.audit")

LOGGED_ACTIONS = frozenset({"delete", "export", "create"})

_STUDENT_FLAGS = [ComplianceFlag.COPPA.value, ComplianceFlag.GDPR.value]
_EXPORT_FLAGS = [ComplianceFlag.GDPR.value, ComplianceFlag.DATA_EXPORT.value]
_DELETION_FLAGS = [ComplianceFlag.GDPR.value, ComplianceFlag.RIGHT_TO_BE_FORGOTTEN.value]


class AuditLogEntry(BaseModel):
    """Immutable audit record.

    The logger only hands out deep copies, so changing the ``details`` or
    ``compliance_flags`` of a returned entry leaves the stored one intact.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str | None = None
    user_type: UserType
    action: str
    resource: str
    resource_id: str | None = None
    details: dict[str, Any] | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    success: bool
    error_message: str | None = None
    timestamp: datetime
    hub_id: str | None = None
    sensitive_data: bool = False
    compliance_flags: list[str] | None = None


class AuditLogFilters(BaseModel):
    """Filters for get_audit_logs(). Unset fields do not filter."""

    user_id: str | None = None
    resource: str | None = None
    action: str | None = None
    hub_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    sensitive_data: bool | None = None
    success: bool | None = None
    limit: int = Field(default=100, ge=1)
    offset: int = Field(default=0, ge=0)


class AuditLogPage(NamedTuple):
    """One page of audit entries plus the unpaginated match count."""

    logs: list[AuditLogEntry]
    total: int


@dataclass
class ComplianceReport:
    """Aggregate view over the audit buffer."""

    total_events: int
    sensitive_data_events: int
    failed_events: int
    compliance_flags: dict[str, int] = field(default_factory=dict)
    recent_events: list[AuditLogEntry] = field(default_factory=list)


def log_level_for(success: bool, sensitive_data: bool, action: str) -> str:
    """Pick the log level for an audit entry."""
    if not success:
        return "error"
    if sensitive_data:
        return "warning"
    if action in LOGGED_ACTIONS:
        return "info"
    return "debug"


def format_audit_message(entry: AuditLogEntry) -> str:
    """Render a one-line summary of an entry."""
    parts = [
        f"[{entry.user_type.value.upper()}]",
        entry.action.upper(),
        entry.resource,
        f"({entry.resource_id})" if entry.resource_id else "",
        f"hub:{entry.hub_id}" if entry.hub_id else "",
        "SUCCESS" if entry.success else "FAILED",
        f"- {entry.error_message}" if entry.error_message else "",
        "[SENSITIVE]" if entry.sensitive_data else "",
        f"[{','.join(entry.compliance_flags)}]" if entry.compliance_flags else "",
    ]
    return " ".join(part for part in parts if part)


class AuditLogger:
    """Bounded, thread-safe, append-only audit buffer.

    Attributes:
        capacity: Maximum number of retained entries.
        recent_window: Window used for compliance report samples.
        recent_sample_size: Maximum recent events in a report.
        clear_after_days: Default age limit for clear_old_logs().
    """

    def __init__(
        self,
        capacity: int = 10_000,
        recent_window: timedelta = timedelta(hours=24),
        recent_sample_size: int = 50,
        clear_after_days: int = 90,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the audit logger.

        Args:
            capacity: Maximum entries kept in memory.
            recent_window: Age limit for compliance report samples.
            recent_sample_size: Maximum recent events per report.
            clear_after_days: Default age limit for clear_old_logs().
            clock: Source of entry timestamps.
        """
        if capacity < 1:
            raise ValueError("Capacity must be positive")

        self.capacity = capacity
        self.recent_window = recent_window
        self.recent_sample_size = recent_sample_size
        self.clear_after_days = clear_after_days
        self._clock = clock
        self._entries: deque[AuditLogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # =========================================================================
    # Recording
    # =========================================================================

    def log_event(
        self,
        *,
        user_type: UserType | str,
        action: str,
        resource: str,
        success: bool,
        user_id: str | None = None,
        resource_id: str | None = None,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        error_message: str | None = None,
        hub_id: str | None = None,
        sensitive_data: bool = False,
        compliance_flags: list[str] | None = None,
    ) -> AuditLogEntry | None:
        """Record an event and emit a log line.

        Returns:
            A copy of the stored entry, or None if recording failed.
        """
        try:
            entry = AuditLogEntry(
                id=f"audit_{uuid4().hex}",
                user_id=user_id,
                user_type=UserType(user_type),
                action=action,
                resource=resource,
                resource_id=resource_id,
                details=details,
                ip_address=ip_address,
                user_agent=user_agent,
                success=success,
                error_message=error_message,
                timestamp=self._clock(),
                hub_id=hub_id,
                sensitive_data=sensitive_data,
                compliance_flags=list(compliance_flags) if compliance_flags else None,
            )

            with self._lock:
                self._entries.append(entry)

            level = log_level_for(entry.success, entry.sensitive_data, entry.action)
            getattr(audit_log, level)(
                format_audit_message(entry),
                audit_id=entry.id,
                details=sanitize_for_logging(entry.details),
            )
            return entry.model_copy(deep=True)
        except Exception:
            logger.exception("Failed to record audit event %s:%s", resource, action)
            return None

    def log_student_data_access(
        self,
        context: AccessContext,
        *,
        action: str,
        student_id: str,
        success: bool,
        hub_id: str | None = None,
        error_message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditLogEntry | None:
        """Record a view/create/update/delete/export of a student record."""
        return self.log_event(
            user_id=context.user_id,
            user_type=context.user_type,
            action=action,
            resource="student",
            resource_id=student_id,
            hub_id=hub_id or context.hub_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            success=success,
            error_message=error_message,
            details=details,
            sensitive_data=True,
            compliance_flags=_STUDENT_FLAGS,
        )

    def log_device_operation(
        self,
        context: AccessContext,
        *,
        action: str,
        success: bool,
        device_id: str | None = None,
        device_code: str | None = None,
        hub_id: str | None = None,
        error_message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditLogEntry | None:
        """Record a device create/update/delete/register/validate."""
        return self.log_event(
            user_id=context.user_id,
            user_type=context.user_type,
            action=action,
            resource="device",
            resource_id=device_id or device_code,
            hub_id=hub_id or context.hub_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            success=success,
            error_message=error_message,
            details=details,
        )

    def log_authentication_attempt(
        self,
        *,
        identifier_type: str,
        identifier: str | None,
        action: str,
        success: bool,
        ip_address: str | None = None,
        user_agent: str | None = None,
        error_message: str | None = None,
        hub_id: str | None = None,
    ) -> AuditLogEntry | None:
        """Record a login/logout/register/validate attempt.

        Only the identifier's type and length are stored, never its value.

        Args:
            identifier_type: "student", "device" or "admin".
            identifier: Student code, device code or admin email.
        """
        user_type = UserType.ADMIN if identifier_type == "admin" else UserType.ANONYMOUS

        details: dict[str, Any] = {
            "identifier_type": identifier_type,
            "identifier_length": len(identifier) if identifier else 0,
        }
        if error_message:
            details["error"] = error_message

        return self.log_event(
            user_type=user_type,
            action=action,
            resource="authentication",
            ip_address=ip_address,
            user_agent=user_agent,
            success=success,
            error_message=error_message,
            hub_id=hub_id,
            details=details,
        )

    def log_data_export(
        self,
        context: AccessContext,
        *,
        export_type: str,
        resource_ids: list[str],
        success: bool,
        hub_id: str | None = None,
        error_message: str | None = None,
    ) -> AuditLogEntry | None:
        """Record a GDPR data export."""
        return self.log_event(
            user_id=context.user_id,
            user_type=context.user_type,
            action="export",
            resource=export_type,
            resource_id=",".join(resource_ids),
            hub_id=hub_id or context.hub_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            success=success,
            error_message=error_message,
            sensitive_data=True,
            compliance_flags=_EXPORT_FLAGS,
            details={
                "exported_records": len(resource_ids),
                "export_type": export_type,
            },
        )

    def log_data_deletion(
        self,
        context: AccessContext,
        *,
        deletion_type: str,
        resource_ids: list[str],
        reason: str,
        success: bool,
        hub_id: str | None = None,
        error_message: str | None = None,
    ) -> AuditLogEntry | None:
        """Record a GDPR erasure."""
        return self.log_event(
            user_id=context.user_id,
            user_type=context.user_type,
            action="delete",
            resource=deletion_type,
            resource_id=",".join(resource_ids),
            hub_id=hub_id or context.hub_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            success=success,
            error_message=error_message,
            sensitive_data=True,
            compliance_flags=_DELETION_FLAGS,
            details={
                "deleted_records": len(resource_ids),
                "deletion_type": deletion_type,
                "reason": reason,
            },
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_audit_logs(self, filters: AuditLogFilters | None = None) -> AuditLogPage:
        """Filter, sort newest first and paginate the buffer."""
        filters = filters or AuditLogFilters()
        start = ensure_utc(filters.start_date)
        end = ensure_utc(filters.end_date)

        with self._lock:
            snapshot = list(reversed(self._entries))

        def matches(entry: AuditLogEntry) -> bool:
            if filters.user_id and entry.user_id != filters.user_id:
                return False
            if filters.resource and entry.resource != filters.resource:
                return False
            if filters.action and entry.action != filters.action:
                return False
            if filters.hub_id and entry.hub_id != filters.hub_id:
                return False
            if start and entry.timestamp < start:
                return False
            if end and entry.timestamp > end:
                return False
            if filters.sensitive_data is not None and entry.sensitive_data != filters.sensitive_data:
                return False
            if filters.success is not None and entry.success != filters.success:
                return False
            return True

        matched = [entry for entry in snapshot if matches(entry)]
        matched.sort(key=lambda entry: entry.timestamp, reverse=True)

        page = matched[filters.offset : filters.offset + filters.limit]
        return AuditLogPage(
            logs=[entry.model_copy(deep=True) for entry in page],
            total=len(matched),
        )

    def get_compliance_report(self, hub_id: str | None = None) -> ComplianceReport:
        """Summarize the buffer, optionally for one hub."""
        with self._lock:
            entries = [e for e in self._entries if hub_id is None or e.hub_id == hub_id]

        flags: Counter[str] = Counter()
        for entry in entries:
            flags.update(entry.compliance_flags or [])

        since = self._clock() - self.recent_window
        recent = sorted(
            (e for e in reversed(entries) if e.timestamp >= since),
            key=lambda e: e.timestamp,
            reverse=True,
        )

        return ComplianceReport(
            total_events=len(entries),
            sensitive_data_events=sum(1 for e in entries if e.sensitive_data),
            failed_events=sum(1 for e in entries if not e.success),
            compliance_flags=dict(flags),
            recent_events=[e.model_copy(deep=True) for e in recent[: self.recent_sample_size]],
        )

    # =========================================================================
    # Maintenance
    # =========================================================================

    def clear_old_logs(self, older_than_days: int | None = None) -> int:
        """Drop entries older than ``older_than_days``.

        Args:
            older_than_days: Age limit, defaults to ``clear_after_days``.

        Returns:
            Number of removed entries.
        """
        if older_than_days is None:
            older_than_days = self.clear_after_days
        cutoff = self._clock() - timedelta(days=older_than_days)

        with self._lock:
            kept = [entry for entry in self._entries if entry.timestamp >= cutoff]
            removed = len(self._entries) - len(kept)
            self._entries = deque(kept, maxlen=self.capacity)

        logger.info(
            "Cleared %d audit log entries older than %d days", removed, older_than_days
        )
        return removed
