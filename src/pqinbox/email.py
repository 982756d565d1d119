"""Email value type for pqinbox."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from .errors import InvalidPayloadError
from .types import Attachment, AuthResults, EmailResponse
from .utils import (
    extract_links,
    normalize_headers,
    parse_attachments,
    parse_auth_results,
    parse_iso_timestamp,
)


@dataclass(frozen=True)
class Email:
    """A verified, decrypted email.

    Emails are plain values. They hold no reference to the inbox they came
    from; mark-read and delete go through ``Inbox`` using the email id.

    Attributes:
        id: Unique email identifier within its inbox.
        from_address: Sender email address.
        to: Recipient email addresses.
        subject: Email subject line.
        received_at: Timestamp when the email was received.
        is_read: Whether the email has been read.
        text: Plain text content (may be None).
        html: HTML content (may be None).
        headers: Email headers keyed by lower-cased name.
        attachments: Decoded attachments.
        links: URLs found in the email, in order of first appearance.
        auth_results: Email authentication results (SPF/DKIM/DMARC/ReverseDNS).
        metadata: Raw decrypted metadata.
        parsed_metadata: Additional metadata from the parsed content.
    """

    id: str
    from_address: str
    to: list[str]
    subject: str
    received_at: datetime
    is_read: bool
    text: str | None = None
    html: str | None = None
    headers: dict[str, Any] = field(default_factory=dict)
    attachments: list[Attachment] = field(default_factory=list)
    links: list[str] = field(default_factory=list)
    auth_results: AuthResults = field(default_factory=AuthResults)
    metadata: dict[str, Any] = field(default_factory=dict, repr=False)
    parsed_metadata: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_parts(
        cls,
        envelope: EmailResponse,
        metadata: dict[str, Any],
        parsed: dict[str, Any],
    ) -> Email:
        """Build an Email from an envelope and its decoded metadata and content.

        Raises:
            InvalidPayloadError: If a required field is missing or malformed.
        """
        email_id = envelope.get("id")
        if not isinstance(email_id, str) or not email_id:
            raise InvalidPayloadError("Envelope has no email id")

        received_at = _parse_received_at(envelope, metadata)

        to = metadata.get("to", [])
        if isinstance(to, str):
            to = [to]

        text = parsed.get("text")
        html = parsed.get("html")
        server_links = parsed.get("links")
        links = (
            list(dict.fromkeys(server_links))
            if isinstance(server_links, list) and server_links
            else extract_links(text, html)
        )

        return cls(
            id=email_id,
            from_address=metadata.get("from", ""),
            to=list(to),
            subject=metadata.get("subject", ""),
            received_at=received_at,
            is_read=bool(envelope.get("isRead", False)),
            text=text,
            html=html,
            headers=normalize_headers(parsed.get("headers")),
            attachments=parse_attachments(parsed.get("attachments")),
            links=links,
            auth_results=parse_auth_results(parsed.get("authResults")),
            metadata=metadata,
            parsed_metadata=parsed.get("metadata") or {},
        )

    def with_read(self, is_read: bool = True) -> Email:
        """Return a copy with the read flag changed."""
        return replace(self, is_read=is_read)


def _parse_received_at(envelope: EmailResponse, metadata: dict[str, Any]) -> datetime:
    value = envelope.get("receivedAt") or metadata.get("receivedAt")
    if not value:
        raise InvalidPayloadError("Envelope has no receivedAt timestamp")
    try:
        return parse_iso_timestamp(value)
    except ValueError as e:
        raise InvalidPayloadError(f"Invalid receivedAt timestamp: {value!r}") from e
