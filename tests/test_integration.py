"""Integration tests against a real pqinbox server.

These tests create real inboxes and send mail over SMTP to exercise the full
verify-and-decrypt path.

Requirements:
- .env file with PQINBOX_URL, PQINBOX_API_KEY, SMTP_HOST, SMTP_PORT
- Network access to the server and its SMTP port
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
import smtplib
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import pytest
from dotenv import load_dotenv

from pqinbox import (
    CreateInboxOptions,
    DeliveryStrategyType,
    Email,
    PqInboxClient,
    WaitForCountOptions,
    WaitForEmailOptions,
)
from pqinbox.errors import ApiError, InboxNotFoundError

load_dotenv()


def get_env_or_skip(name: str) -> str:
    """Get environment variable or skip test if not set."""
    value = os.getenv(name)
    if not value:
        pytest.skip(f"{name} environment variable not set")
    return value


@pytest.fixture(scope="module")
def smtp_config() -> dict[str, str | int]:
    """Get SMTP configuration from environment."""
    return {
        "host": get_env_or_skip("SMTP_HOST"),
        "port": int(os.getenv("SMTP_PORT", "25")),
    }


@pytest.fixture(scope="module")
def api_config() -> dict[str, str]:
    """Get API configuration from environment."""
    return {
        "api_key": get_env_or_skip("PQINBOX_API_KEY"),
        "base_url": get_env_or_skip("PQINBOX_URL"),
    }


def send_email(
    smtp_config: dict[str, str | int],
    to_address: str,
    subject: str,
    body_text: str,
    body_html: str | None = None,
    from_address: str = "test@example.com",
) -> None:
    """Send an email via SMTP."""
    if body_html:
        msg: MIMEText | MIMEMultipart = MIMEMultipart("alternative")
        msg.attach(MIMEText(body_text, "plain"))
        msg.attach(MIMEText(body_html, "html"))
    else:
        msg = MIMEText(body_text, "plain")

    msg["Subject"] = subject
    msg["From"] = from_address
    msg["To"] = to_address

    with smtplib.SMTP(str(smtp_config["host"]), int(smtp_config["port"])) as server:
        server.sendmail(from_address, [to_address], msg.as_string())


class TestServerConnection:
    """Tests for basic server connectivity."""

    @pytest.mark.asyncio
    async def test_check_api_key(self, api_config: dict[str, str]) -> None:
        """Test that API key validation works."""
        async with PqInboxClient(**api_config) as client:
            assert await client.check_key() is True

    @pytest.mark.asyncio
    async def test_server_info_algorithms(self, api_config: dict[str, str]) -> None:
        """Test that the server advertises the expected suite."""
        async with PqInboxClient(**api_config) as client:
            info = await client.get_server_info()
            assert info.algs.get("kem") == "ML-KEM-768"
            assert info.algs.get("sig") == "ML-DSA-65"
            assert info.algs.get("aead") == "AES-256-GCM"
            assert info.algs.get("kdf") == "HKDF-SHA-512"

    @pytest.mark.asyncio
    async def test_invalid_api_key(self, api_config: dict[str, str]) -> None:
        """Test that an invalid API key is rejected."""
        async with PqInboxClient(api_key="invalid-key", base_url=api_config["base_url"]) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.check_key()
            assert exc_info.value.status_code == 401


class TestEmailReceiving:
    """Tests for receiving emails over both transports."""

    @pytest.mark.parametrize("strategy", [DeliveryStrategyType.SSE, DeliveryStrategyType.POLLING])
    @pytest.mark.asyncio
    async def test_receive_simple_email(
        self,
        api_config: dict[str, str],
        smtp_config: dict[str, str | int],
        strategy: DeliveryStrategyType,
    ) -> None:
        """Test receiving a text email."""
        unique_id = uuid.uuid4().hex[:8]
        subject = f"Test Email {unique_id}"

        async with PqInboxClient(**api_config, strategy=strategy) as client:
            inbox = await client.create_inbox()
            send_email(smtp_config, inbox.email_address, subject, f"Body {unique_id}")

            email = await inbox.wait_for_email(WaitForEmailOptions(subject=subject, timeout=30000))

            assert unique_id in (email.text or "")
            assert email.from_address == "test@example.com"

    @pytest.mark.asyncio
    async def test_links_and_regex_filter(
        self,
        api_config: dict[str, str],
        smtp_config: dict[str, str | int],
    ) -> None:
        """Test that HTML links are extracted and regex filters match."""
        unique_id = uuid.uuid4().hex[:8]
        link = f"https://example.com/verify?token={unique_id}"

        async with PqInboxClient(**api_config) as client:
            inbox = await client.create_inbox()
            send_email(
                smtp_config,
                inbox.email_address,
                f"Verify {unique_id}",
                f"Open {link}",
                body_html=f'<a href="{link}">Verify</a>',
            )

            email = await inbox.wait_for_email(
                WaitForEmailOptions(subject=re.compile(r"^Verify "), timeout=30000)
            )

            assert link in email.links

    @pytest.mark.asyncio
    async def test_wait_for_count_and_mark_read(
        self,
        api_config: dict[str, str],
        smtp_config: dict[str, str | int],
    ) -> None:
        """Test counting waits, read flags and deletion."""
        async with PqInboxClient(**api_config) as client:
            inbox = await client.create_inbox()
            for n in range(2):
                send_email(smtp_config, inbox.email_address, f"Count {n}", "Body")

            emails = await inbox.wait_for_email_count(2, WaitForCountOptions(timeout=30000))
            await inbox.mark_email_as_read(emails[0].id)
            await inbox.delete_email(emails[1].id)

            remaining = await inbox.list_emails()
            assert [e.id for e in remaining] == [emails[0].id]
            assert remaining[0].is_read

    @pytest.mark.asyncio
    async def test_raw_email(
        self,
        api_config: dict[str, str],
        smtp_config: dict[str, str | int],
    ) -> None:
        """Test that the raw MIME source is available."""
        unique_id = uuid.uuid4().hex[:8]

        async with PqInboxClient(**api_config) as client:
            inbox = await client.create_inbox()
            send_email(smtp_config, inbox.email_address, f"Raw {unique_id}", "Body")
            email = await inbox.wait_for_email(WaitForEmailOptions(timeout=30000))

            raw = await inbox.get_raw_email(email.id)

            assert f"Subject: Raw {unique_id}" in raw.raw


class TestInboxMonitor:
    """Tests for monitoring several inboxes."""

    @pytest.mark.asyncio
    async def test_monitor_multiple_inboxes(
        self,
        api_config: dict[str, str],
        smtp_config: dict[str, str | int],
    ) -> None:
        """Test that emails from every monitored inbox arrive."""
        received: list[Email] = []

        async with PqInboxClient(**api_config) as client:
            inbox1 = await client.create_inbox()
            inbox2 = await client.create_inbox()

            async with client.monitor_inboxes([inbox1, inbox2]) as monitor:
                monitor.on_email(lambda inbox, email: received.append(email))
                send_email(smtp_config, inbox1.email_address, "Multi 1", "Body 1")
                send_email(smtp_config, inbox2.email_address, "Multi 2", "Body 2")

                for _ in range(30):
                    if len(received) >= 2:
                        break
                    await asyncio.sleep(1)

            assert sorted(e.subject for e in received) == ["Multi 1", "Multi 2"]


class TestExportImport:
    """Tests for inbox export and import."""

    @pytest.mark.asyncio
    async def test_export_and_import_inbox(
        self,
        api_config: dict[str, str],
        smtp_config: dict[str, str | int],
    ) -> None:
        """Test that an imported inbox decrypts emails received before export."""
        unique_id = uuid.uuid4().hex[:8]

        client1 = PqInboxClient(**api_config)
        try:
            inbox = await client1.create_inbox(CreateInboxOptions(encryption="encrypted"))
            send_email(smtp_config, inbox.email_address, f"Export {unique_id}", "Body")
            await inbox.wait_for_email(WaitForEmailOptions(timeout=30000))
            exported = client1.export_inbox(inbox)
        finally:
            # Closing does not delete the inbox on the server
            with contextlib.suppress(Exception):
                await client1.close()

        async with PqInboxClient(**api_config) as client2:
            imported = await client2.import_inbox(exported)
            emails = await imported.list_emails()

            assert any(unique_id in e.subject for e in emails)
            await imported.delete()


class TestAccessAfterDelete:
    """Tests for accessing a deleted inbox."""

    @pytest.mark.asyncio
    async def test_access_after_delete(self, api_config: dict[str, str]) -> None:
        """Test that a deleted inbox raises InboxNotFoundError."""
        async with PqInboxClient(**api_config) as client:
            inbox = await client.create_inbox()
            await inbox.delete()

            with pytest.raises(InboxNotFoundError):
                await inbox.list_emails()
