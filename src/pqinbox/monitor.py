"""Multi-inbox monitoring for pqinbox."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .email import Email
from .types import ErrorCallback

if TYPE_CHECKING:
    from .coordinator import Subscription
    from .inbox import Inbox

logger = logging.getLogger("pqinbox")

# Callbacks receive both the inbox and the email
InboxEmailCallback = Callable[["Inbox", Email], Any]


@dataclass(frozen=True)
class InboxEvent:
    """A new email tagged with the inbox it arrived in."""

    inbox: Inbox
    email: Email


class InboxMonitor:
    """Monitor multiple inboxes for new emails.

    Events from each inbox arrive in that inbox's order; there is no ordering
    across inboxes. Events can be consumed through callbacks, by async
    iteration, or both.

    Example:
        ```python
        monitor = client.monitor_inboxes([inbox1, inbox2])

        @monitor.on_email
        async def handle_email(inbox: Inbox, email: Email):
            print(f"New email in {inbox.email_address}: {email.subject}")

        await monitor.start()
        ```
    """

    def __init__(self, inboxes: list[Inbox], on_error: ErrorCallback | None = None) -> None:
        self._inboxes = list(inboxes)
        self._on_error = on_error
        self._callbacks: list[InboxEmailCallback] = []
        self._subscriptions: list[tuple[Inbox, Subscription]] = []
        self._queues: list[asyncio.Queue[InboxEvent | None]] = []
        self._lock = asyncio.Lock()
        self._started = False
        self._closed = False

    @property
    def inboxes(self) -> list[Inbox]:
        return list(self._inboxes)

    def on_email(self, callback: InboxEmailCallback) -> InboxEmailCallback:
        """Register a callback for new emails. Usable as a decorator.

        Args:
            callback: Function receiving (inbox, email). May be async.
        """
        self._callbacks.append(callback)
        return callback

    async def start(self) -> InboxMonitor:
        """Subscribe to every inbox. Calling it again is a no-op."""
        async with self._lock:
            if self._started or self._closed:
                return self
            for inbox in self._inboxes:
                subscription = await inbox.on_new_email(self._make_handler(inbox))
                self._subscriptions.append((inbox, subscription))
            self._started = True
        return self

    def _make_handler(self, inbox: Inbox) -> Callable[[Email], Any]:
        async def handle_email(email: Email) -> None:
            event = InboxEvent(inbox, email)
            for queue in self._queues:
                queue.put_nowait(event)
            for callback in self._callbacks:
                try:
                    result = callback(inbox, email)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.warning(
                        "Error in monitor callback for %s: %s",
                        inbox.email_address,
                        e,
                        exc_info=True,
                    )
                    self._report(e)

        return handle_email

    def _report(self, error: BaseException) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception as callback_error:
            logger.debug("Error in error callback: %s", callback_error, exc_info=True)

    async def __aiter__(self) -> AsyncIterator[InboxEvent]:
        """Yield events until the monitor is closed."""
        if self._closed:
            return
        queue: asyncio.Queue[InboxEvent | None] = asyncio.Queue()
        self._queues.append(queue)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    async def close(self) -> None:
        """Unsubscribe from every inbox exactly once and end iteration."""
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            subscriptions, self._subscriptions = self._subscriptions, []
            for inbox, subscription in subscriptions:
                try:
                    await inbox.unsubscribe(subscription)
                except Exception as e:
                    logger.debug(
                        "Error unsubscribing from %s: %s", inbox.email_address, e, exc_info=True
                    )
            for queue in self._queues:
                queue.put_nowait(None)

    unsubscribe = close

    async def __aenter__(self) -> InboxMonitor:
        return await self.start()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
