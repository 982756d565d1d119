"""Tests for utility modules."""

from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone

import pytest

from pqinbox.errors import InvalidPayloadError
from pqinbox.types import DKIMStatus, SPFStatus
from pqinbox.utils import (
    decode_plain_part,
    extract_links,
    format_iso_timestamp,
    normalize_headers,
    parse_attachments,
    parse_auth_results,
    parse_iso_timestamp,
    validate_email_id,
    validate_ttl,
)


class TestParseAttachments:
    """Tests for the parse_attachments utility."""

    def test_decodes_content(self) -> None:
        """Test that base64 content is decoded and fields mapped."""
        result = parse_attachments(
            [
                {
                    "filename": "report.pdf",
                    "contentType": "application/pdf",
                    "content": base64.b64encode(b"%PDF").decode(),
                    "contentDisposition": "attachment",
                }
            ]
        )
        assert result[0].content == b"%PDF"
        assert result[0].size == 4
        assert result[0].content_disposition == "attachment"

    def test_invalid_base64_content_returns_empty_bytes(self) -> None:
        """Test that invalid base64 content results in empty bytes."""
        result = parse_attachments(
            [
                {
                    "filename": "test.txt",
                    "contentType": "text/plain",
                    "size": 100,
                    "content": "!!!invalid-base64!!!",
                }
            ]
        )
        assert len(result) == 1
        assert result[0].filename == "test.txt"
        assert result[0].content == b""

    def test_missing(self) -> None:
        """Test that no attachments gives an empty list."""
        assert parse_attachments(None) == []


class TestExtractLinks:
    """Tests for link extraction."""

    def test_text_and_html(self) -> None:
        """Test that links from both bodies are found, deduplicated, in order."""
        text = "Verify at https://example.com/verify?token=abc. Thanks!"
        html = '<a href="https://example.com/verify?token=abc">x</a> <a href="http://b.test/">y</a>'

        assert extract_links(text, html) == [
            "https://example.com/verify?token=abc",
            "http://b.test/",
        ]

    def test_html_entities_unescaped(self) -> None:
        """Test that &amp; in attributes becomes &."""
        html = '<a href="https://a.test/p?x=1&amp;y=2">go</a>'

        assert extract_links(None, html) == ["https://a.test/p?x=1&y=2"]

    def test_no_bodies(self) -> None:
        """Test that missing bodies give no links."""
        assert extract_links(None, "") == []


class TestNormalizeHeaders:
    """Tests for header normalization."""

    def test_lower_cases_names(self) -> None:
        """Test that header names are lower-cased."""
        assert normalize_headers({"Content-Type": "text/plain", "X-Id": "1"}) == {
            "content-type": "text/plain",
            "x-id": "1",
        }

    def test_none(self) -> None:
        """Test that missing headers give an empty dict."""
        assert normalize_headers(None) == {}


class TestParseAuthResults:
    """Tests for auth result parsing."""

    def test_parses_all_sections(self) -> None:
        """Test the camelCase server structure."""
        results = parse_auth_results(
            {
                "spf": {"result": "pass", "domain": "example.com"},
                "dkim": [{"result": "fail", "selector": "s1"}],
                "dmarc": {"result": "pass", "policy": "reject"},
                "reverseDns": {"result": "pass", "hostname": "mx.example.com"},
            }
        )
        assert results.spf is not None and results.spf.result is SPFStatus.PASS
        assert results.dkim[0].result is DKIMStatus.FAIL
        assert results.reverse_dns is not None
        assert results.reverse_dns.hostname == "mx.example.com"

    def test_unknown_status_is_invalid(self) -> None:
        """Test that an unknown status value is rejected."""
        with pytest.raises(InvalidPayloadError):
            parse_auth_results({"spf": {"result": "maybe"}})


class TestDecodePlainPart:
    """Tests for plain envelope decoding."""

    def test_decodes_json_object(self) -> None:
        """Test base64 JSON decoding."""
        value = base64.b64encode(json.dumps({"subject": "Hi"}).encode()).decode()

        assert decode_plain_part(value, "metadata") == {"subject": "Hi"}

    @pytest.mark.parametrize(
        "value",
        [None, "", "not base64!", base64.b64encode(b"[1, 2]").decode()],
    )
    def test_rejects_bad_parts(self, value: str | None) -> None:
        """Test that missing, non-base64 and non-object parts are invalid."""
        with pytest.raises(InvalidPayloadError):
            decode_plain_part(value, "metadata")


class TestTimestamps:
    """Tests for ISO 8601 helpers."""

    def test_parse_z_suffix(self) -> None:
        """Test that a Z suffix parses as UTC."""
        parsed = parse_iso_timestamp("2024-01-15T10:30:00Z")
        assert parsed == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_parse_offset(self) -> None:
        """Test that explicit offsets are kept."""
        parsed = parse_iso_timestamp("2024-01-15T12:30:00+02:00")
        assert parsed.utcoffset() == timedelta(hours=2)

    def test_parse_invalid(self) -> None:
        """Test that garbage raises ValueError."""
        with pytest.raises(ValueError):
            parse_iso_timestamp("yesterday")

    def test_format_uses_z(self) -> None:
        """Test that UTC timestamps render with a Z suffix."""
        value = datetime(2024, 1, 15, 12, 30, tzinfo=timezone(timedelta(hours=2)))
        assert format_iso_timestamp(value) == "2024-01-15T10:30:00Z"


class TestValidation:
    """Tests for input validation helpers."""

    @pytest.mark.parametrize("email_id", ["abc123", "a_b-c", "X"])
    def test_valid_email_ids(self, email_id: str) -> None:
        """Test that safe ids pass."""
        validate_email_id(email_id)

    @pytest.mark.parametrize("email_id", ["", "../etc", "a/b", "a b", "id?x=1"])
    def test_invalid_email_ids(self, email_id: str) -> None:
        """Test that ids unsafe for URL paths are rejected."""
        with pytest.raises(ValueError):
            validate_email_id(email_id)

    def test_ttl_bounds(self) -> None:
        """Test the inclusive TTL bounds."""
        validate_ttl(None, 60, 604800)
        validate_ttl(60, 60, 604800)
        validate_ttl(604800, 60, 604800)
        with pytest.raises(ValueError, match="between 60 and 604800"):
            validate_ttl(59, 60, 604800)
        with pytest.raises(ValueError):
            validate_ttl(604801, 60, 604800)
