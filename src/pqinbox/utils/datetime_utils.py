"""Timestamp helpers for pqinbox."""

from datetime import datetime, timezone


def parse_iso_timestamp(timestamp_str: str) -> datetime:
    """Parse an ISO 8601 timestamp string to datetime.

    Handles both 'Z' suffix and '+00:00' timezone formats.

    Raises:
        ValueError: If the string is not an ISO 8601 timestamp.
    """
    if not isinstance(timestamp_str, str):
        raise ValueError(f"Expected an ISO 8601 string, got {type(timestamp_str).__name__}")
    if timestamp_str.endswith("Z"):
        timestamp_str = timestamp_str[:-1] + "+00:00"
    return datetime.fromisoformat(timestamp_str)


def format_iso_timestamp(value: datetime) -> str:
    """Render a datetime the way the server does, with a 'Z' suffix for UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
