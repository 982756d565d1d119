"""Base64 encoding/decoding utilities for pqinbox."""

import base64
import binascii
import re

_BASE64URL_ALPHABET = re.compile(r"^[A-Za-z0-9_-]*$")
_FORBIDDEN = re.compile(r"[+/=]")


class Base64URLDecodeError(ValueError):
    """Input is not strict, unpadded base64url."""

    pass


def to_base64url(data: bytes) -> str:
    """Encode bytes to URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def from_base64url(s: str) -> bytes:
    """Decode strict, unpadded base64url.

    Standard-alphabet characters and padding are rejected.

    Args:
        s: The base64url string to decode.

    Returns:
        The decoded bytes.

    Raises:
        Base64URLDecodeError: If the input contains characters outside the
            base64url alphabet or has an impossible length.
    """
    if _FORBIDDEN.search(s):
        raise Base64URLDecodeError("Base64URL string contains forbidden characters (+, / or =)")
    if not _BASE64URL_ALPHABET.match(s):
        raise Base64URLDecodeError("Base64URL string contains non-Base64URL characters")
    if len(s) % 4 == 1:
        raise Base64URLDecodeError(f"Invalid Base64URL length: {len(s)}")
    try:
        return base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))
    except binascii.Error as e:
        raise Base64URLDecodeError(f"Invalid Base64URL data: {e}") from e

