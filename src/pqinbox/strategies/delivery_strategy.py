"""Abstract delivery strategy interface for pqinbox."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from ..errors import EmailNotFoundError, EnvelopeError, SecurityError
from ..types import EmailResponse, ErrorCallback

if TYPE_CHECKING:
    from ..http import ApiClient
    from ..tracker import InboxStateTracker

logger = logging.getLogger("pqinbox")


class DeliveryStrategy(ABC):
    """Transport that feeds one inbox's envelopes into its tracker.

    Subclasses run a single background task between ``start`` and ``stop``.
    Errors raised inside that task are logged and passed to the handlers
    registered with ``on_error``; they never propagate across tasks.
    """

    def __init__(
        self,
        api_client: ApiClient,
        tracker: InboxStateTracker,
        email_address: str,
        inbox_hash: str,
    ) -> None:
        self._api_client = api_client
        self._tracker = tracker
        self._email_address = email_address
        self._inbox_hash = inbox_hash
        self._error_handlers: list[ErrorCallback] = []
        self._last_hash: str | None = None

    @abstractmethod
    async def start(self) -> None:
        """Start delivering in the background."""
        pass  # pragma: no cover

    @abstractmethod
    async def stop(self) -> None:
        """Stop delivering and release the background task."""
        pass  # pragma: no cover

    @property
    @abstractmethod
    def running(self) -> bool:
        pass  # pragma: no cover

    def on_error(self, handler: ErrorCallback) -> ErrorCallback:
        """Register an error handler. Usable as a decorator."""
        self._error_handlers.append(handler)
        return handler

    def _report_error(self, error: BaseException) -> None:
        for handler in list(self._error_handlers):
            try:
                handler(error)
            except Exception as callback_error:
                logger.debug("Error in error handler: %s", callback_error, exc_info=True)

    def _apply(self, envelope: EmailResponse) -> bool:
        """Feed one envelope to the tracker.

        Returns:
            True if the envelope carried a new email.
        """
        try:
            return self._tracker.apply_envelope(envelope).is_new
        except SecurityError as e:
            logger.error(
                "Rejected email %s for %s: %s", envelope.get("id"), self._email_address, e
            )
            self._report_error(e)
        except EnvelopeError as e:
            logger.warning(
                "Skipping email %s for %s: %s", envelope.get("id"), self._email_address, e
            )
            self._report_error(e)
        return False

    async def fetch_and_apply(self, email_id: str) -> bool:
        """Fetch a full envelope by id and feed it to the tracker.

        Ids already held or previously rejected are skipped without a request.
        """
        if self._tracker.has_seen(email_id) or self._tracker.is_rejected(email_id):
            return False
        try:
            envelope = await self._api_client.get_email(self._email_address, email_id)
        except EmailNotFoundError:
            logger.debug("Email %s was deleted before it could be fetched", email_id)
            return False
        return self._apply(envelope)

    async def reconcile(self) -> int:
        """Bring the tracker in line with the server.

        Compares the server's sync hash with the last one seen; when it changed,
        lists email metadata, fetches every unseen email and forgets ids the
        server no longer lists.

        Returns:
            Number of new emails recorded.

        Raises:
            NetworkError, ApiError, NotFoundError: From the control plane.
        """
        status = await self._api_client.get_sync_status(self._email_address)
        if status.emails_hash == self._last_hash:
            return 0

        # Emails applied while the listing is in flight may be missing from it
        held_before = self._tracker.email_ids()
        listed = await self._api_client.list_emails(self._email_address)
        listed_ids = [item["id"] for item in listed]

        listed_set = set(listed_ids)
        for email_id in held_before:
            if email_id not in listed_set:
                self._tracker.forget(email_id)

        new_count = 0
        for email_id in listed_ids:
            if await self.fetch_and_apply(email_id):
                new_count += 1

        self._last_hash = status.emails_hash
        if new_count:
            logger.debug("Reconciled %d new email(s) for %s", new_count, self._email_address)
        return new_count
