"""
Date and time utilities for the bet ledger.

All timestamps are stored as fixed-width ISO8601 strings with microseconds and
a 'Z' suffix so that lexical order in SQLite equals chronological order.
"""

from datetime import datetime, timezone

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """
    Return current UTC time as ISO8601 with Z suffix.

    Returns:
        Current UTC time in ISO8601 format with 'Z' suffix.
        Example: "2025-10-29T14:30:00.123456Z"
    """
    return format_utc_iso(utc_now())


def parse_utc_iso(iso_string: str) -> datetime:
    """
    Parse ISO8601 string with Z suffix to datetime object.

    Naive inputs are assumed to be UTC.

    Args:
        iso_string: ISO8601 string, usually with 'Z' suffix.

    Returns:
        Datetime object in UTC timezone.
    """
    # Replace Z with +00:00 for proper parsing
    if iso_string.endswith("Z"):
        iso_string = iso_string[:-1] + "+00:00"

    parsed = datetime.fromisoformat(iso_string)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_utc_iso(dt: datetime) -> str:
    """
    Format datetime object as fixed-width ISO8601 with Z suffix.

    Args:
        dt: Datetime object (will be converted to UTC if not already).

    Returns:
        ISO8601 string with microseconds and 'Z' suffix.
    """
    # Convert to UTC if not already
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)

    return dt.strftime(ISO_FORMAT)


def normalize_utc_iso(value: "str | datetime") -> str:
    """Coerce a datetime or ISO string into the stored timestamp format."""
    if isinstance(value, datetime):
        return format_utc_iso(value)
    return format_utc_iso(parse_utc_iso(value))
