# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Process-wide governance services.

The audit buffer is in-process state; build_services() is called once at
startup and the resulting GovernanceServices is passed to every registry
service instead of living in module globals.

Example:
    >>> services = build_services(get_settings())
    >>> async with get_session() as session:
    ...     students = StudentService(session, services)
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from src.core.config.settings import RegistrySettings, Settings, get_settings
from src.domains.governance.access_control import AccessControlService
from src.domains.governance.audit_logger import AuditLogger
from src.domains.security.codes import CodeGenerator
from src.domains.security.encryption import SecurityService
from src.utils.logging import setup_logging

logger = logging.getLogger(__name__)


@dataclass
class GovernanceServices:
    """Shared collaborators of the student and device registries."""

    security: SecurityService
    access_control: AccessControlService
    audit: AuditLogger
    codes: CodeGenerator
    registry: RegistrySettings


def build_services(settings: Settings) -> GovernanceServices:
    """Construct the governance services from settings.

    Encryption setup warnings are logged but never block startup.
    """
    security = SecurityService.from_settings(settings.security)

    report = security.validate_encryption_setup()
    for warning in report.warnings:
        if settings.is_production:
            logger.error("Encryption misconfigured: %s", warning)
        else:
            logger.warning("Encryption setup: %s", warning)

    audit = AuditLogger(
        capacity=settings.audit.capacity,
        recent_window=timedelta(hours=settings.audit.recent_window_hours),
        recent_sample_size=settings.audit.recent_sample_size,
        clear_after_days=settings.audit.clear_after_days,
    )

    return GovernanceServices(
        security=security,
        access_control=AccessControlService(),
        audit=audit,
        codes=CodeGenerator(security),
        registry=settings.registry,
    )


def bootstrap(settings: Settings | None = None) -> GovernanceServices:
    """Configure logging and build the services for a host process."""
    settings = settings or get_settings()
    setup_logging(settings)
    logger.info("Starting governance core (environment=%s)", settings.environment)
    return build_services(settings)
