# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Structured logging for the governance core.

Two streams share one structlog pipeline: module loggers
(``logging.getLogger(__name__)``) and the audit stream
(``get_logger("src.audit")``). Every event passes through
redact_sensitive_fields(), so student names and contact data never reach a
log line even when a caller binds them by mistake.

Hubs run on a classroom server with a console attached, so development
output is rendered for a terminal; production output is one JSON object per
line for the hub's log shipper.

Example:
    >>> from src.utils.logging import setup_logging, get_logger
    >>> from src.core.config import get_settings
    >>> setup_logging(get_settings())
    >>> audit_log = get_logger("src.audit")
    >>> audit_log.warning("[ADMIN] VIEW student", hub_id="hub-1", first_name="Ada")
"""

import logging
import sys
from typing import TYPE_CHECKING

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from src.domains.security.encryption import sanitize_for_logging

if TYPE_CHECKING:
    from src.core.config.settings import Settings

# Driver and event-loop loggers held at WARNING
QUIET_LOGGERS = ("sqlalchemy", "aiosqlite", "asyncpg", "asyncio")


def redact_sensitive_fields(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """structlog processor masking PII keys anywhere in the event."""
    return sanitize_for_logging(event_dict)


def _renderer(settings: "Settings") -> list[Processor]:
    if settings.is_development or settings.debug:
        return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]
    return [
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]


def setup_logging(settings: "Settings") -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        settings: Application settings; uses log_level, debug and environment.
    """
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_sensitive_fields,
        structlog.processors.StackInfoRenderer(),
        *_renderer(settings),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("src").setLevel(log_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, e.g. ``get_logger("src.audit")``."""
    return structlog.get_logger(name)
