"""Tests for the Inbox class."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from pqinbox.coordinator import WaitStatus
from pqinbox.crypto import to_base64url
from pqinbox.errors import (
    EmailNotFoundError,
    InvalidPayloadError,
    NetworkError,
    StrategyError,
    TimeoutError,
)
from pqinbox.filters import MATCH_ALL
from pqinbox.inbox import Inbox
from pqinbox.strategies import PollingStrategy
from pqinbox.types import (
    ClientConfig,
    DeliveryStrategyType,
    PollingConfig,
    SyncStatus,
    WaitForCountOptions,
    WaitForEmailOptions,
)

if TYPE_CHECKING:
    from conftest import EnvelopeFactory

ADDRESS = "test@pqinbox.dev"


def make_api_client(envelopes: dict[str, dict[str, Any]]) -> MagicMock:
    """Mock control plane whose listing always reflects ``envelopes``."""
    api_client = MagicMock()

    async def get_sync_status(email_address: str) -> SyncStatus:
        return SyncStatus(email_count=len(envelopes), emails_hash=",".join(envelopes))

    async def list_emails(email_address: str, include_content: bool = False) -> list[Any]:
        if include_content:
            return list(envelopes.values())
        return [{"id": email_id} for email_id in envelopes]

    async def get_email(email_address: str, email_id: str) -> dict[str, Any]:
        if email_id not in envelopes:
            raise EmailNotFoundError(f"Email not found: {email_id}")
        return envelopes[email_id]

    api_client.get_sync_status = AsyncMock(side_effect=get_sync_status)
    api_client.list_emails = AsyncMock(side_effect=list_emails)
    api_client.get_email = AsyncMock(side_effect=get_email)
    api_client.get_raw_email = AsyncMock()
    api_client.mark_email_as_read = AsyncMock()
    api_client.delete_email = AsyncMock()
    api_client.delete_inbox = AsyncMock()
    return api_client


def make_inbox(
    api_client: MagicMock,
    factory: EnvelopeFactory,
    on_error: Any = None,
) -> Inbox:
    config = ClientConfig(
        api_key="test-key",
        strategy=DeliveryStrategyType.POLLING,
        polling=PollingConfig(initial_interval=20, max_backoff=50, jitter_factor=0),
        on_error=on_error,
    )
    keypair = factory.keypair
    return Inbox(
        email_address=ADDRESS,
        expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        inbox_hash=keypair.inbox_hash if keypair is not None else "plain-hash",
        encrypted=keypair is not None,
        email_auth=True,
        server_sig_pk=factory.pinned_key,
        _keypair=keypair,
        _api_client=api_client,
        _config=config,
    )


class TestInboxOperations:
    """Tests for control-plane operations routed through the tracker."""

    @pytest.mark.asyncio
    async def test_list_emails_decrypts_and_records(
        self, encrypted_factory: EnvelopeFactory
    ) -> None:
        """Test that listed envelopes are verified and held."""
        envelopes = {i: encrypted_factory.envelope(i) for i in ("e1", "e2")}
        inbox = make_inbox(make_api_client(envelopes), encrypted_factory)

        emails = await inbox.list_emails()

        assert [e.id for e in emails] == ["e1", "e2"]
        assert inbox.sync_status().email_count == 2

    @pytest.mark.asyncio
    async def test_list_emails_fetches_missing_content(
        self, plain_factory: EnvelopeFactory
    ) -> None:
        """Test that metadata-only entries are completed with a fetch."""
        api_client = make_api_client({"e1": plain_factory.envelope("e1")})
        api_client.list_emails.side_effect = None
        api_client.list_emails.return_value = [plain_factory.envelope("e1", include_content=False)]
        inbox = make_inbox(api_client, plain_factory)

        emails = await inbox.list_emails()

        assert emails[0].text == "Hello there"
        api_client.get_email.assert_awaited_once_with(ADDRESS, "e1")

    @pytest.mark.asyncio
    async def test_list_emails_metadata_only(self, encrypted_factory: EnvelopeFactory) -> None:
        """Test that metadata is decrypted without the parsed part."""
        api_client = make_api_client({})
        api_client.list_emails.side_effect = None
        api_client.list_emails.return_value = [
            encrypted_factory.envelope("m1", subject="Meta", include_content=False)
        ]
        inbox = make_inbox(api_client, encrypted_factory)

        metadata = await inbox.list_emails_metadata_only()

        assert metadata[0].subject == "Meta"
        assert inbox.sync_status().email_count == 0

    @pytest.mark.asyncio
    async def test_get_email_uses_held_copy(self, plain_factory: EnvelopeFactory) -> None:
        """Test that a second get is served by the tracker."""
        api_client = make_api_client({"e1": plain_factory.envelope("e1")})
        inbox = make_inbox(api_client, plain_factory)

        first = await inbox.get_email("e1")
        second = await inbox.get_email("e1")

        assert first is second
        api_client.get_email.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_email_validates_id(self, plain_factory: EnvelopeFactory) -> None:
        """Test that ids are validated before being placed in a URL."""
        inbox = make_inbox(make_api_client({}), plain_factory)

        with pytest.raises(ValueError, match="Invalid email ID"):
            await inbox.get_email("../etc/passwd")

    @pytest.mark.asyncio
    async def test_get_email_not_found(self, plain_factory: EnvelopeFactory) -> None:
        """Test that a missing email raises EmailNotFoundError."""
        inbox = make_inbox(make_api_client({}), plain_factory)

        with pytest.raises(EmailNotFoundError):
            await inbox.get_email("missing")

    @pytest.mark.asyncio
    async def test_get_raw_email(self, encrypted_factory: EnvelopeFactory) -> None:
        """Test that raw source is verified with the inbox keys."""
        api_client = make_api_client({})
        api_client.get_raw_email.return_value = encrypted_factory.raw("e1", "Subject: Raw")
        inbox = make_inbox(api_client, encrypted_factory)

        raw = await inbox.get_raw_email("e1")

        assert raw.raw == "Subject: Raw"

    @pytest.mark.asyncio
    async def test_mark_email_as_read_updates_held_value(
        self, plain_factory: EnvelopeFactory
    ) -> None:
        """Test that the held Email is replaced, not mutated."""
        api_client = make_api_client({"e1": plain_factory.envelope("e1")})
        inbox = make_inbox(api_client, plain_factory)
        before = await inbox.get_email("e1")

        await inbox.mark_email_as_read("e1")
        after = await inbox.get_email("e1")

        api_client.mark_email_as_read.assert_awaited_once_with(ADDRESS, "e1")
        assert before.is_read is False
        assert after.is_read is True

    @pytest.mark.asyncio
    async def test_delete_email_forgets_it(self, plain_factory: EnvelopeFactory) -> None:
        """Test that a deleted email leaves the local view and changes the hash."""
        envelopes = {"e1": plain_factory.envelope("e1")}
        api_client = make_api_client(envelopes)
        inbox = make_inbox(api_client, plain_factory)
        await inbox.get_email("e1")
        status = inbox.sync_status()

        await inbox.delete_email("e1")

        api_client.delete_email.assert_awaited_once_with(ADDRESS, "e1")
        assert inbox.sync_status().email_count == 0
        assert inbox.sync_status().emails_hash != status.emails_hash

    @pytest.mark.asyncio
    async def test_get_sync_status_from_server(self, plain_factory: EnvelopeFactory) -> None:
        """Test that server sync status comes from the control plane."""
        inbox = make_inbox(make_api_client({"e1": plain_factory.envelope("e1")}), plain_factory)

        status = await inbox.get_sync_status()

        assert status.email_count == 1


class TestInboxWaiting:
    """Tests for waits and subscriptions with live delivery."""

    @pytest.mark.asyncio
    async def test_wait_for_existing_email(self, plain_factory: EnvelopeFactory) -> None:
        """Test that an email already on the server satisfies a new wait."""
        envelopes = {"e1": plain_factory.envelope("e1", subject="Welcome")}
        inbox = make_inbox(make_api_client(envelopes), plain_factory)

        email = await inbox.wait_for_email(WaitForEmailOptions(subject="Welcome", timeout=1000))
        await inbox.close()

        assert email.id == "e1"
        assert inbox.strategy is None

    @pytest.mark.asyncio
    async def test_wait_for_email_arriving_later(self, plain_factory: EnvelopeFactory) -> None:
        """Test that polling delivers an email that arrives during the wait."""
        envelopes: dict[str, Any] = {}
        inbox = make_inbox(make_api_client(envelopes), plain_factory)

        async def deliver() -> None:
            await asyncio.sleep(0.05)
            envelopes["late"] = plain_factory.envelope("late", subject="Late")

        task = asyncio.create_task(deliver())
        email = await inbox.wait_for_email(WaitForEmailOptions(subject="Late", timeout=3000))
        await task
        assert isinstance(inbox.strategy, PollingStrategy)
        await inbox.close()

        assert email.id == "late"

    @pytest.mark.asyncio
    async def test_wait_for_email_timeout(self, plain_factory: EnvelopeFactory) -> None:
        """Test that an unmatched wait raises TimeoutError and or_none returns None."""
        inbox = make_inbox(make_api_client({}), plain_factory)

        with pytest.raises(TimeoutError):
            await inbox.wait_for_email(WaitForEmailOptions(timeout=50))
        assert await inbox.wait_for_email_or_none(WaitForEmailOptions(timeout=50)) is None
        await inbox.close()

    @pytest.mark.asyncio
    async def test_wait_for_email_count(self, plain_factory: EnvelopeFactory) -> None:
        """Test waiting for several emails."""
        envelopes = {i: plain_factory.envelope(i) for i in ("e1", "e2", "e3")}
        inbox = make_inbox(make_api_client(envelopes), plain_factory)

        emails = await inbox.wait_for_email_count(3, WaitForCountOptions(timeout=1000))
        await inbox.close()

        assert [e.id for e in emails] == ["e1", "e2", "e3"]

    @pytest.mark.asyncio
    async def test_on_new_email(self, plain_factory: EnvelopeFactory) -> None:
        """Test that a subscription sees new emails but not existing ones."""
        envelopes = {"old": plain_factory.envelope("old")}
        inbox = make_inbox(make_api_client(envelopes), plain_factory)
        received: list[str] = []

        subscription = await inbox.on_new_email(lambda e: received.append(e.id))
        envelopes["new"] = plain_factory.envelope("new")
        for _ in range(100):
            if received:
                break
            await asyncio.sleep(0.01)
        await inbox.unsubscribe(subscription)
        await inbox.close()

        assert received == ["new"]

    @pytest.mark.asyncio
    async def test_transport_error_fails_pending_wait(
        self, plain_factory: EnvelopeFactory
    ) -> None:
        """Test that a delivery error ends a wait instead of letting it time out."""
        on_error = MagicMock()
        api_client = make_api_client({})
        inbox = make_inbox(api_client, plain_factory, on_error=on_error)
        await inbox._ensure_delivery()
        api_client.get_sync_status.side_effect = NetworkError("down")

        result = await inbox.wait(MATCH_ALL, 3000)
        await inbox.close()

        assert result.status is WaitStatus.ERROR
        assert isinstance(result.error, NetworkError)
        on_error.assert_called()

    @pytest.mark.asyncio
    async def test_bad_envelope_does_not_fail_wait(self, plain_factory: EnvelopeFactory) -> None:
        """Test that a malformed envelope is reported but the wait continues."""
        on_error = MagicMock()
        bad = plain_factory.envelope("bad")
        bad["metadata"] = "!!!"
        envelopes = {"bad": bad, "good": plain_factory.envelope("good")}
        inbox = make_inbox(make_api_client(envelopes), plain_factory, on_error=on_error)

        email = await inbox.wait_for_email(WaitForEmailOptions(timeout=1000))
        await inbox.close()

        assert email.id == "good"
        assert isinstance(on_error.call_args.args[0], InvalidPayloadError)

    @pytest.mark.asyncio
    async def test_closed_inbox_rejects_delivery(self, plain_factory: EnvelopeFactory) -> None:
        """Test that waits after close raise StrategyError."""
        inbox = make_inbox(make_api_client({}), plain_factory)
        await inbox.close()

        with pytest.raises(StrategyError):
            await inbox.wait_for_email(WaitForEmailOptions(timeout=50))


class TestInboxLifecycle:
    """Tests for export, close and delete."""

    def test_export_encrypted(self, encrypted_factory: EnvelopeFactory) -> None:
        """Test that encrypted exports carry the secret key and pinned server key."""
        inbox = make_inbox(make_api_client({}), encrypted_factory)

        exported = inbox.export()

        assert exported.version == 1
        assert exported.email_address == ADDRESS
        assert exported.expires_at == "2030-01-01T00:00:00Z"
        assert exported.secret_key == to_base64url(encrypted_factory.keypair.secret_key)
        assert exported.server_sig_pk == encrypted_factory.pinned_key
        assert "secretKey" in exported.to_dict()

    def test_export_plain(self, plain_factory: EnvelopeFactory) -> None:
        """Test that plain exports carry no key material."""
        inbox = make_inbox(make_api_client({}), plain_factory)

        data = inbox.export().to_dict()

        assert data["encrypted"] is False
        assert "secretKey" not in data
        assert "serverSigPk" not in data

    @pytest.mark.asyncio
    async def test_delete(self, plain_factory: EnvelopeFactory) -> None:
        """Test that delete stops delivery, deletes remotely and clears state."""
        api_client = make_api_client({"e1": plain_factory.envelope("e1")})
        inbox = make_inbox(api_client, plain_factory)
        await inbox.get_email("e1")

        await inbox.delete()

        api_client.delete_inbox.assert_awaited_once_with(ADDRESS)
        assert inbox.sync_status().email_count == 0
        assert inbox.strategy is None

    def test_repr_hides_keys(self, encrypted_factory: EnvelopeFactory) -> None:
        """Test that the keypair and client are not part of repr."""
        inbox = make_inbox(make_api_client({}), encrypted_factory)

        text = repr(inbox)

        assert ADDRESS in text
        assert "_keypair" not in text
        assert "_api_client" not in text
