"""Envelope verification: turns server envelopes into verified values.

Every function here is synchronous and side-effect free. An inbox is either
encrypted (it owns a keypair and a pinned server signing key) or plain (it owns
neither). Encrypted inboxes only accept signed, encrypted envelopes; a plain
envelope arriving at an encrypted inbox is treated as a downgrade attempt.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from .crypto import Keypair, decrypt_metadata, decrypt_parsed, decrypt_raw
from .email import Email
from .errors import DecryptionError, InvalidPayloadError, SignatureVerificationError
from .types import EmailMetadata, EmailResponse, RawEmail, RawEmailResponse
from .utils import decode_plain_part, parse_iso_timestamp


def is_encrypted_envelope(envelope: EmailResponse | RawEmailResponse) -> bool:
    """Whether an envelope carries encrypted parts."""
    return any(key in envelope for key in ("encryptedMetadata", "encryptedParsed", "encryptedRaw"))


def has_content(envelope: EmailResponse) -> bool:
    """Whether an envelope carries the full parsed content, not just metadata."""
    return bool(envelope.get("encryptedParsed") or envelope.get("parsed"))


def verify_and_decrypt(
    envelope: EmailResponse,
    keypair: Keypair | None,
    pinned_server_key: str | None,
) -> Email:
    """Verify an envelope and return the email it carries.

    Args:
        envelope: A full email envelope from the server.
        keypair: The inbox keypair, or None for a plain inbox.
        pinned_server_key: Server signing key captured at inbox creation,
            or None for a plain inbox.

    Raises:
        EnvelopeError: If the envelope is malformed or cannot be decrypted.
        SecurityError: If the signature or pinned server key check fails.
    """
    _check_envelope(envelope)
    if keypair is not None:
        key = _require_pinned_key(envelope, pinned_server_key)
        if "encryptedParsed" not in envelope:
            raise InvalidPayloadError("Missing required field: encryptedParsed")
        metadata = decrypt_metadata(envelope["encryptedMetadata"], keypair, key)
        parsed = decrypt_parsed(envelope["encryptedParsed"], keypair, key)
    else:
        _reject_encrypted_for_plain_inbox(envelope)
        metadata = decode_plain_part(envelope.get("metadata"), "metadata")
        parsed = decode_plain_part(envelope.get("parsed"), "content")

    return Email.from_parts(envelope, metadata, parsed)


def verify_metadata(
    envelope: EmailResponse,
    keypair: Keypair | None,
    pinned_server_key: str | None,
) -> EmailMetadata:
    """Verify only the metadata part of an envelope.

    Used for metadata-only listings where the parsed content is absent.
    """
    _check_envelope(envelope)
    if keypair is not None:
        key = _require_pinned_key(envelope, pinned_server_key)
        metadata = decrypt_metadata(envelope["encryptedMetadata"], keypair, key)
    else:
        _reject_encrypted_for_plain_inbox(envelope)
        metadata = decode_plain_part(envelope.get("metadata"), "metadata")

    received_at = envelope.get("receivedAt") or metadata.get("receivedAt")
    try:
        parsed_received_at = parse_iso_timestamp(received_at)  # type: ignore[arg-type]
    except ValueError as e:
        raise InvalidPayloadError(f"Invalid receivedAt timestamp: {received_at!r}") from e

    return EmailMetadata(
        id=envelope["id"],
        from_address=metadata.get("from", ""),
        subject=metadata.get("subject", ""),
        received_at=parsed_received_at,
        is_read=bool(envelope.get("isRead", False)),
    )


def verify_raw(
    response: RawEmailResponse,
    keypair: Keypair | None,
    pinned_server_key: str | None,
) -> RawEmail:
    """Verify a raw-source response and return the MIME text."""
    _check_envelope(response)
    if keypair is not None:
        if "encryptedRaw" not in response:
            raise SignatureVerificationError(
                "Unsigned raw email delivered to an encrypted inbox"
            )
        key = _require_pinned_key(response, pinned_server_key)
        raw = decrypt_raw(response["encryptedRaw"], keypair, key)
    else:
        _reject_encrypted_for_plain_inbox(response)
        try:
            raw = base64.b64decode(response.get("raw") or "", validate=True).decode("utf-8")
        except (binascii.Error, ValueError) as e:
            raise InvalidPayloadError(f"Failed to decode plain raw email: {e}") from e
    return RawEmail(id=response["id"], raw=raw)


def _check_envelope(envelope: Any) -> None:
    if not isinstance(envelope, dict):
        raise InvalidPayloadError("Envelope must be an object")
    email_id = envelope.get("id")
    if not isinstance(email_id, str) or not email_id:
        raise InvalidPayloadError("Missing required field: id")


def _require_pinned_key(envelope: Any, pinned_server_key: str | None) -> str:
    if pinned_server_key is None:
        raise ValueError("Encrypted inbox has no pinned server signing key")
    if not is_encrypted_envelope(envelope):
        raise SignatureVerificationError("Unsigned plain envelope delivered to an encrypted inbox")
    if "encryptedMetadata" not in envelope and "encryptedRaw" not in envelope:
        raise InvalidPayloadError("Missing required field: encryptedMetadata")
    return pinned_server_key


def _reject_encrypted_for_plain_inbox(envelope: Any) -> None:
    if is_encrypted_envelope(envelope):
        raise DecryptionError("Encrypted envelope delivered to a plain inbox with no keypair")
