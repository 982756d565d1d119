"""Utility functions for pqinbox."""

from .datetime_utils import format_iso_timestamp, parse_iso_timestamp, utc_now
from .email_utils import (
    decode_plain_part,
    extract_links,
    normalize_headers,
    parse_attachments,
    parse_auth_results,
)
from .validation import validate_email_id, validate_ttl

__all__ = [
    "decode_plain_part",
    "extract_links",
    "format_iso_timestamp",
    "normalize_headers",
    "parse_attachments",
    "parse_auth_results",
    "parse_iso_timestamp",
    "utc_now",
    "validate_email_id",
    "validate_ttl",
]
