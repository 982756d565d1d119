"""Error hierarchy for pqinbox.

Errors fall into distinct families so callers can react by type:

- transport errors (``NetworkError``, ``ApiError``) surface after the HTTP layer
  has exhausted its retries;
- ``EnvelopeError`` subclasses are scoped to a single malformed or undecryptable
  envelope and never stop delivery of the next one;
- ``SecurityError`` subclasses indicate tampering or key substitution and must
  never be downgraded to warnings;
- ``TimeoutError`` is an expected outcome of a wait;
- ``NotFoundError`` carries the resource type it refers to.
"""

from __future__ import annotations

from typing import Literal

ResourceType = Literal["inbox", "email"]


class PqInboxError(Exception):
    """Base exception for all pqinbox errors."""

    pass


class ApiError(PqInboxError):
    """HTTP API error with status code.

    Attributes:
        status_code: The HTTP status code.
        message: The error message.
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"API Error ({status_code}): {message}")


class NetworkError(PqInboxError):
    """Network communication failure."""

    pass


class TimeoutError(PqInboxError):
    """A wait did not complete within its timeout."""

    pass


class NotFoundError(PqInboxError):
    """A resource was not found (404).

    Attributes:
        resource_type: Which kind of resource was missing ("inbox" or "email").
    """

    resource_type: ResourceType

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InboxNotFoundError(NotFoundError):
    """Inbox not found (404)."""

    resource_type: ResourceType = "inbox"


class EmailNotFoundError(NotFoundError):
    """Email not found (404)."""

    resource_type: ResourceType = "email"


class InboxAlreadyExistsError(PqInboxError):
    """Inbox already exists during import."""

    pass


class InvalidImportDataError(PqInboxError):
    """Invalid data provided for inbox import."""

    pass


class EnvelopeError(PqInboxError):
    """A single envelope could not be validated or decrypted.

    Scoped to the offending envelope. Never retried automatically.
    """

    pass


class InvalidPayloadError(EnvelopeError):
    """Envelope is structurally invalid (missing fields, bad encoding, bad JSON)."""

    pass


class UnsupportedVersionError(EnvelopeError):
    """Envelope or export uses an unsupported protocol version."""

    pass


class InvalidAlgorithmError(EnvelopeError):
    """Envelope names an unsupported algorithm."""

    pass


class InvalidSizeError(EnvelopeError):
    """A decoded binary field has the wrong length."""

    pass


class DecryptionError(EnvelopeError):
    """KEM decapsulation or AEAD decryption failed."""

    pass


class SecurityError(PqInboxError):
    """Base class for security-critical failures.

    CRITICAL: These errors indicate potential tampering or a man-in-the-middle.
    They are never retried and never silently ignored.
    """

    pass


class SignatureVerificationError(SecurityError):
    """Signature verification failure, or an unsigned envelope where one was required."""

    pass


class ServerKeyMismatchError(SecurityError):
    """Envelope was signed by a key other than the one pinned at inbox creation."""

    pass


class SSEError(PqInboxError):
    """Server-Sent Events connection error."""

    pass


class StrategyError(PqInboxError):
    """Delivery strategy configuration or execution error."""

    pass
