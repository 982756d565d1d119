"""Validation utilities for pqinbox."""

from __future__ import annotations

import re

# Pattern for valid email IDs - alphanumeric, underscores, and hyphens
EMAIL_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


def validate_email_id(email_id: str) -> None:
    """Validate email ID format before it is placed in a URL path.

    Raises:
        ValueError: If the email ID format is invalid.
    """
    if not email_id:
        raise ValueError("Email ID cannot be empty")
    if not EMAIL_ID_PATTERN.match(email_id):
        raise ValueError(
            f"Invalid email ID format: {email_id!r}. "
            "Email ID must contain only alphanumeric characters, underscores, and hyphens."
        )


def validate_ttl(ttl: int | None, min_ttl: int, max_ttl: int) -> None:
    """Check an inbox TTL against the allowed bounds.

    Raises:
        ValueError: If the TTL is outside [min_ttl, max_ttl].
    """
    if ttl is None:
        return
    if not min_ttl <= ttl <= max_ttl:
        raise ValueError(f"ttl must be between {min_ttl} and {max_ttl} seconds, got {ttl}")
