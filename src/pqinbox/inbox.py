"""Inbox class for pqinbox."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from .coordinator import Subscription, WaitCoordinator, WaitResult
from .crypto import Keypair, to_base64url
from .crypto.constants import EXPORT_VERSION
from .email import Email
from .errors import EnvelopeError, StrategyError
from .filters import EmailFilter, build_filter
from .strategies import create_strategy
from .tracker import InboxStateTracker
from .types import (
    ClientConfig,
    EmailMetadata,
    ExportedInbox,
    RawEmail,
    SyncStatus,
    WaitForCountOptions,
    WaitForEmailOptions,
)
from .utils import format_iso_timestamp, utc_now, validate_email_id
from .verifier import has_content, verify_metadata, verify_raw

if TYPE_CHECKING:
    from .http import ApiClient
    from .strategies import DeliveryStrategy

logger = logging.getLogger("pqinbox")


@dataclass(eq=False)
class Inbox:
    """A temporary inbox and its live, verified view of incoming email.

    Every envelope fetched for this inbox, whether through a delivery transport
    or a direct call such as ``get_email``, goes through the inbox's state
    tracker. Delivery starts on the first wait or subscription.

    Attributes:
        email_address: The email address assigned to the inbox.
        expires_at: Timestamp when the inbox will expire.
        inbox_hash: Base64url SHA-256 of the client KEM public key.
        encrypted: Whether the inbox uses encryption.
        email_auth: Whether email authentication checks are enabled.
        server_sig_pk: Server signing key pinned at creation (encrypted inboxes only).
    """

    email_address: str
    expires_at: datetime
    inbox_hash: str
    encrypted: bool
    email_auth: bool
    server_sig_pk: str | None
    _keypair: Keypair | None = field(repr=False)
    _api_client: ApiClient = field(repr=False)
    _config: ClientConfig = field(repr=False)
    _tracker: InboxStateTracker = field(init=False, repr=False)
    _coordinator: WaitCoordinator = field(init=False, repr=False)
    _strategy: DeliveryStrategy | None = field(default=None, init=False, repr=False)
    _delivery_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)
    _closed: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        self._tracker = InboxStateTracker(self._keypair, self.server_sig_pk)
        self._coordinator = WaitCoordinator(self._tracker, on_error=self._config.on_error)

    @property
    def keypair(self) -> Keypair | None:
        return self._keypair

    @property
    def strategy(self) -> DeliveryStrategy | None:
        """The active delivery strategy, once delivery has started."""
        return self._strategy

    # Delivery

    async def _ensure_delivery(self) -> None:
        """Start the delivery strategy on first use.

        The first reconciliation runs before returning so that emails already on
        the server are held by the tracker before any wait or subscription.
        """
        async with self._delivery_lock:
            if self._strategy is not None:
                return
            if self._closed:
                raise StrategyError("Inbox is closed")
            strategy = create_strategy(
                self._config, self._api_client, self._tracker, self.email_address, self.inbox_hash
            )
            strategy.on_error(self._handle_delivery_error)
            await strategy.reconcile()
            await strategy.start()
            self._strategy = strategy

    def _handle_delivery_error(self, error: BaseException) -> None:
        # A bad envelope only affects itself; anything else ends pending waits
        if not isinstance(error, EnvelopeError):
            self._coordinator.fail(error)
        if self._config.on_error is not None:
            try:
                self._config.on_error(error)
            except Exception as callback_error:
                logger.debug("Error in error callback: %s", callback_error, exc_info=True)

    # Control-plane operations

    async def list_emails(self) -> list[Email]:
        """List all emails in the inbox, verified and decrypted."""
        responses = await self._api_client.list_emails(self.email_address, include_content=True)
        emails = []
        for envelope in responses:
            if not has_content(envelope):
                envelope = await self._api_client.get_email(self.email_address, envelope["id"])
            emails.append(self._tracker.apply_envelope(envelope).email)
        return emails

    async def list_emails_metadata_only(self) -> list[EmailMetadata]:
        """List email metadata without fetching content."""
        responses = await self._api_client.list_emails(self.email_address)
        return [verify_metadata(r, self._keypair, self.server_sig_pk) for r in responses]

    async def get_email(self, email_id: str) -> Email:
        """Get a specific email by ID.

        Raises:
            EmailNotFoundError: If the email does not exist.
        """
        validate_email_id(email_id)
        held = self._tracker.get(email_id)
        if held is not None:
            return held
        envelope = await self._api_client.get_email(self.email_address, email_id)
        return self._tracker.apply_envelope(envelope).email

    async def get_raw_email(self, email_id: str) -> RawEmail:
        """Get the raw MIME source of an email."""
        validate_email_id(email_id)
        response = await self._api_client.get_raw_email(self.email_address, email_id)
        return verify_raw(response, self._keypair, self.server_sig_pk)

    async def mark_email_as_read(self, email_id: str) -> None:
        validate_email_id(email_id)
        await self._api_client.mark_email_as_read(self.email_address, email_id)
        held = self._tracker.get(email_id)
        if held is not None:
            self._tracker.replace(held.with_read())

    async def delete_email(self, email_id: str) -> None:
        validate_email_id(email_id)
        await self._api_client.delete_email(self.email_address, email_id)
        self._tracker.forget(email_id)

    async def get_sync_status(self) -> SyncStatus:
        """Get the server's sync status for this inbox."""
        return await self._api_client.get_sync_status(self.email_address)

    def sync_status(self) -> SyncStatus:
        """Local sync status computed from emails held by the tracker."""
        return self._tracker.sync_status()

    # Waiting

    async def wait(
        self,
        email_filter: EmailFilter,
        timeout: int,
        *,
        count: int = 1,
    ) -> WaitResult:
        """Wait without raising. Returns a MATCHED, TIMEOUT or ERROR result."""
        await self._ensure_delivery()
        return await self._coordinator.wait(email_filter, timeout, count=count)

    async def wait_for_email(self, options: WaitForEmailOptions | None = None) -> Email:
        """Wait for an email matching the filter options.

        Emails already received count, so an email that arrived before the call
        is returned immediately.

        Raises:
            TimeoutError: If no matching email arrives within the timeout.
        """
        options = options or WaitForEmailOptions()
        await self._ensure_delivery()
        return await self._coordinator.wait_for_email(build_filter(options), options.timeout)

    async def wait_for_email_or_none(
        self, options: WaitForEmailOptions | None = None
    ) -> Email | None:
        """Like ``wait_for_email`` but returns None on timeout."""
        options = options or WaitForEmailOptions()
        await self._ensure_delivery()
        return await self._coordinator.wait_for_email_or_none(
            build_filter(options), options.timeout
        )

    async def wait_for_email_count(
        self,
        count: int,
        options: WaitForCountOptions | None = None,
    ) -> list[Email]:
        """Wait until ``count`` matching emails have been received.

        Raises:
            TimeoutError: If the count is not reached within the timeout.
        """
        options = options or WaitForCountOptions()
        await self._ensure_delivery()
        return await self._coordinator.wait_for_email_count(
            count, build_filter(options), options.timeout
        )

    async def on_new_email(
        self,
        callback: Callable[[Email], Any],
        *,
        mark_existing_seen: bool = True,
    ) -> Subscription:
        """Subscribe to new email notifications.

        Args:
            callback: Sync or async function called once per new email.
            mark_existing_seen: If True (default), emails already in the inbox
                won't trigger the callback.
        """
        await self._ensure_delivery()
        return self._coordinator.on_new_email(callback, mark_existing_seen=mark_existing_seen)

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Cancel a subscription returned by ``on_new_email``."""
        await self._coordinator.unsubscribe(subscription)

    # Lifecycle

    def export(self) -> ExportedInbox:
        """Export inbox data for persistence/sharing.

        WARNING: Exported data of encrypted inboxes contains the secret key.
        """
        return ExportedInbox(
            version=EXPORT_VERSION,
            email_address=self.email_address,
            expires_at=format_iso_timestamp(self.expires_at),
            inbox_hash=self.inbox_hash,
            encrypted=self.encrypted,
            email_auth=self.email_auth,
            exported_at=format_iso_timestamp(utc_now()),
            server_sig_pk=self.server_sig_pk if self.encrypted else None,
            secret_key=(
                to_base64url(self._keypair.secret_key)
                if self.encrypted and self._keypair is not None
                else None
            ),
        )

    async def close(self) -> None:
        """Stop delivery, fail pending waits and cancel subscriptions.

        The inbox is kept on the server until it expires or is deleted.
        """
        async with self._delivery_lock:
            self._closed = True
            if self._strategy is not None:
                await self._strategy.stop()
                self._strategy = None
        await self._coordinator.close()

    async def delete(self) -> None:
        """Close this inbox and delete it from the server."""
        await self.close()
        await self._api_client.delete_inbox(self.email_address)
        self._tracker.clear()
