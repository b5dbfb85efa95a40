"""
Date and time helpers.

All timestamps flowing through the coverage pipeline are timezone-aware
UTC datetimes. Naive inputs are assumed to be UTC. Parsing goes through
``dateutil`` so GPX and JSON timestamps in any ISO 8601 variant work.
"""

import logging
from datetime import UTC, date, datetime

from dateutil import parser

logger = logging.getLogger(__name__)


def get_current_utc_time() -> datetime:
    """Return the current time as a timezone-aware datetime object in UTC."""
    return datetime.now(UTC)


def parse_timestamp(ts: str | datetime | None) -> datetime | None:
    """
    Parse a timestamp string (or datetime object) into an aware UTC value.

    Returns None for empty or unparseable input instead of raising.
    """
    if not ts:
        return None

    if isinstance(ts, datetime):
        return ensure_utc(ts)

    try:
        parsed_time = parser.isoparse(ts)
    except (ValueError, TypeError) as e:
        logger.warning("Failed to parse timestamp '%s': %s", ts, e)
        return None
    return ensure_utc(parsed_time)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Return the datetime as an explicit UTC-aware value."""

    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)

    return dt.astimezone(UTC)


def normalize_to_utc_datetime(value: str | datetime | date | None) -> datetime | None:
    """Normalize arbitrary date/datetime inputs to a UTC-aware datetime."""

    if value is None:
        return None

    if isinstance(value, datetime):
        return ensure_utc(value)

    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time(), tzinfo=UTC)

    if isinstance(value, str):
        return parse_timestamp(value)

    logger.warning("Unsupported datetime input type '%s'", type(value))
    return None


def seconds_between(start: datetime | None, end: datetime | None) -> float | None:
    """Elapsed seconds from start to end, or None when either is missing."""
    start = ensure_utc(start)
    end = ensure_utc(end)
    if start is None or end is None:
        return None
    return (end - start).total_seconds()
