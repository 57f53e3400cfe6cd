# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime utilities for the EdgeHub governance core.

All timestamps are timezone-aware UTC. SQLite returns naive datetimes for
DateTime(timezone=True) columns, so values read back from storage go through
ensure_utc() before they are compared with utc_now().

Usage:
------
    from src.utils.datetime import utc_now

    # For SQLAlchemy model defaults
    created_at = mapped_column(DateTime(timezone=True), default=utc_now)

    # For Pydantic model defaults
    timestamp: datetime = Field(default_factory=utc_now)
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure a datetime is timezone-aware UTC.

    Naive values are assumed to already be in UTC; aware values are
    converted.

    Args:
        dt: A datetime object (naive or aware) or None.

    Returns:
        Timezone-aware UTC datetime or None.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def add_years(dt: datetime, years: int) -> datetime:
    """Shift a datetime by whole calendar years.

    February 29th maps to March 1st in non-leap target years, so the
    shifted value is never earlier than the same calendar date.

    Args:
        dt: Datetime to shift.
        years: Number of years (may be negative).

    Returns:
        The shifted datetime with the same tzinfo.
    """
    try:
        return dt.replace(year=dt.year + years)
    except ValueError:
        return dt.replace(year=dt.year + years, month=3, day=1)


def format_iso(dt: datetime | None) -> str | None:
    """Format a datetime as ISO 8601 string in UTC."""
    if dt is None:
        return None

    return ensure_utc(dt).isoformat()
