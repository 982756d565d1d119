"""Parsing helpers that turn decrypted email JSON into typed values."""

from __future__ import annotations

import base64
import binascii
import json
import re
from typing import Any

from ..errors import InvalidPayloadError
from ..types import (
    Attachment,
    AuthResults,
    DKIMResult,
    DKIMStatus,
    DMARCPolicy,
    DMARCResult,
    DMARCStatus,
    ReverseDNSResult,
    ReverseDNSStatus,
    SPFResult,
    SPFStatus,
)

# Stops at whitespace, quotes and angle brackets so URLs embedded in HTML attributes
# and plain text are both captured.
_URL_PATTERN = re.compile(r"https?://[^\s<>\"'`]+", re.IGNORECASE)
_TRAILING_PUNCTUATION = ".,;:!?)]}"


def parse_spf_result(data: dict[str, Any] | None) -> SPFResult | None:
    """Parse SPF result from decrypted data."""
    if not data:
        return None
    return SPFResult(
        result=SPFStatus(data.get("result", "none")),
        domain=data.get("domain"),
        ip=data.get("ip"),
        details=data.get("details"),
    )


def parse_dkim_results(data: list[dict[str, Any]] | None) -> list[DKIMResult]:
    """Parse DKIM results from decrypted data."""
    if not data:
        return []
    return [
        DKIMResult(
            result=DKIMStatus(item.get("result", "none")),
            domain=item.get("domain"),
            selector=item.get("selector"),
            signature=item.get("signature"),
        )
        for item in data
    ]


def parse_dmarc_result(data: dict[str, Any] | None) -> DMARCResult | None:
    """Parse DMARC result from decrypted data."""
    if not data:
        return None
    policy = data.get("policy")
    return DMARCResult(
        result=DMARCStatus(data.get("result", "none")),
        policy=DMARCPolicy(policy) if policy else None,
        aligned=data.get("aligned"),
        domain=data.get("domain"),
    )


def parse_reverse_dns_result(data: dict[str, Any] | None) -> ReverseDNSResult | None:
    """Parse reverse DNS result from decrypted data."""
    if not data:
        return None
    return ReverseDNSResult(
        result=ReverseDNSStatus(data.get("result", "none")),
        ip=data.get("ip"),
        hostname=data.get("hostname"),
    )


def parse_auth_results(data: dict[str, Any] | None) -> AuthResults:
    """Parse authentication results from decrypted data.

    Raises:
        InvalidPayloadError: If a status value is not one the server is known to send.
    """
    if not data:
        return AuthResults()
    try:
        return AuthResults(
            spf=parse_spf_result(data.get("spf")),
            dkim=parse_dkim_results(data.get("dkim")),
            dmarc=parse_dmarc_result(data.get("dmarc")),
            reverse_dns=parse_reverse_dns_result(data.get("reverseDns")),
        )
    except (ValueError, AttributeError) as e:
        raise InvalidPayloadError(f"Invalid authResults: {e}") from e


def parse_attachments(data: list[dict[str, Any]] | None) -> list[Attachment]:
    """Parse attachments from decrypted data.

    Content arrives base64-encoded. Content that does not decode is kept as
    empty bytes so the rest of the email is still usable.
    """
    if not data:
        return []

    attachments = []
    for item in data:
        try:
            content = base64.b64decode(item.get("content") or "")
        except (binascii.Error, ValueError):
            content = b""

        attachments.append(
            Attachment(
                filename=item.get("filename", ""),
                content_type=item.get("contentType", "application/octet-stream"),
                size=item.get("size", len(content)),
                content=content,
                content_id=item.get("contentId"),
                content_disposition=item.get("contentDisposition"),
                checksum=item.get("checksum"),
            )
        )
    return attachments


def extract_links(*bodies: str | None) -> list[str]:
    """Find http(s) URLs in the given bodies.

    Returns:
        URLs in order of first appearance, without duplicates.
    """
    links: dict[str, None] = {}
    for body in bodies:
        if not body:
            continue
        for match in _URL_PATTERN.finditer(body):
            url = match.group(0).rstrip(_TRAILING_PUNCTUATION)
            # HTML bodies escape ampersands inside attributes
            url = url.replace("&amp;", "&")
            links.setdefault(url, None)
    return list(links)


def normalize_headers(headers: dict[str, Any] | None) -> dict[str, Any]:
    """Lower-case header names. Later duplicates win."""
    if not headers:
        return {}
    return {str(name).lower(): value for name, value in headers.items()}


def decode_plain_part(value: str | None, context: str) -> dict[str, Any]:
    """Decode a base64 JSON object from a plain (unencrypted) envelope.

    Args:
        value: The base64 text from the envelope.
        context: Description of the part for error messages.

    Raises:
        InvalidPayloadError: If the part is missing, not base64, or not a JSON object.
    """
    if not value:
        raise InvalidPayloadError(f"Missing {context} in plain envelope")
    try:
        data = json.loads(base64.b64decode(value, validate=True).decode("utf-8"))
    except (binascii.Error, ValueError) as e:
        raise InvalidPayloadError(f"Failed to decode plain {context}: {e}") from e
    if not isinstance(data, dict):
        raise InvalidPayloadError(f"Plain {context} is not a JSON object")
    return data
