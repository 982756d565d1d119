"""Wait coordination on top of the inbox state tracker.

One primitive, ``WaitCoordinator.wait``, returns a tagged ``WaitResult``. The
raising and optional-returning entry points are thin wrappers over it.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .constants import DEFAULT_WAIT_TIMEOUT_MS
from .email import Email
from .errors import StrategyError, TimeoutError
from .filters import MATCH_ALL, EmailFilter
from .tracker import InboxStateTracker
from .types import ErrorCallback

logger = logging.getLogger("pqinbox")

EmailCallback = Callable[[Email], Any]


class WaitStatus(str, Enum):
    MATCHED = "matched"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(frozen=True)
class WaitResult:
    """Outcome of a wait.

    Attributes:
        status: MATCHED, TIMEOUT or ERROR.
        emails: Matching emails observed, in first-observed order. On TIMEOUT
            this holds the partial set seen before the deadline.
        error: The transport error that ended the wait, for ERROR.
    """

    status: WaitStatus
    emails: list[Email] = field(default_factory=list)
    error: BaseException | None = None

    @property
    def email(self) -> Email | None:
        return self.emails[0] if self.emails else None


class _Waiter:
    """A transient subscription collecting matches until ``count`` is reached."""

    def __init__(self, email_filter: EmailFilter, count: int, future: asyncio.Future[WaitResult]):
        self.email_filter = email_filter
        self.count = count
        self.future = future
        self.matched: list[Email] = []
        self._matched_ids: set[str] = set()

    def offer(self, email: Email) -> None:
        if self.future.done() or email.id in self._matched_ids:
            return
        try:
            matched = self.email_filter.matches(email)
        except Exception as e:
            self.future.set_result(WaitResult(WaitStatus.ERROR, list(self.matched), e))
            return
        if not matched:
            return
        self._matched_ids.add(email.id)
        self.matched.append(email)
        if len(self.matched) >= self.count:
            self.future.set_result(WaitResult(WaitStatus.MATCHED, list(self.matched)))

    def fail(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_result(WaitResult(WaitStatus.ERROR, list(self.matched), error))


class Subscription:
    """A persistent new-email subscription.

    Emails are queued as they are observed and handed to the callback by a
    dedicated worker task, one at a time and in order. Callback exceptions are
    reported on the error channel and never stop the worker.
    """

    def __init__(self, callback: EmailCallback, on_error: ErrorCallback) -> None:
        self.callback = callback
        self._on_error = on_error
        self._queue: asyncio.Queue[Email] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def _offer(self, email: Email) -> None:
        if self._active:
            self._queue.put_nowait(email)

    def _start(self) -> None:
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            email = await self._queue.get()
            try:
                result = self.callback(email)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning("Error in email callback for %s: %s", email.id, e, exc_info=True)
                self._on_error(e)

    async def _stop(self) -> None:
        self._active = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None


class WaitCoordinator:
    """Blocking and callback APIs over one inbox's tracker."""

    def __init__(self, tracker: InboxStateTracker, on_error: ErrorCallback | None = None) -> None:
        self._tracker = tracker
        self._on_error = on_error
        self._waiters: set[_Waiter] = set()
        self._subscriptions: list[Subscription] = []
        self._closed = False

    async def wait(
        self,
        email_filter: EmailFilter = MATCH_ALL,
        timeout: int = DEFAULT_WAIT_TIMEOUT_MS,
        *,
        count: int = 1,
    ) -> WaitResult:
        """Wait for ``count`` emails matching ``email_filter``.

        Emails the tracker already holds are checked as part of registration,
        so an email arriving while the wait is being set up is never missed.

        Args:
            email_filter: Filter each email must pass.
            timeout: Maximum wait in milliseconds.
            count: Number of distinct matching emails required.
        """
        if count < 1:
            raise ValueError("count must be at least 1")
        if self._closed:
            return WaitResult(WaitStatus.ERROR, error=StrategyError("Inbox is closed"))

        waiter = _Waiter(email_filter, count, asyncio.get_running_loop().create_future())
        self._waiters.add(waiter)
        try:
            self._tracker.subscribe(waiter.offer, replay=True)
            try:
                return await asyncio.wait_for(waiter.future, timeout=timeout / 1000)
            except asyncio.TimeoutError:
                return WaitResult(WaitStatus.TIMEOUT, list(waiter.matched))
        finally:
            self._tracker.unsubscribe(waiter.offer)
            self._waiters.discard(waiter)

    async def wait_for_email(
        self, email_filter: EmailFilter = MATCH_ALL, timeout: int = DEFAULT_WAIT_TIMEOUT_MS
    ) -> Email:
        """Wait for one matching email.

        Raises:
            TimeoutError: If nothing matched within the timeout.
        """
        result = await self.wait(email_filter, timeout)
        if result.status is WaitStatus.TIMEOUT:
            raise TimeoutError(f"Timeout waiting for email after {timeout}ms")
        return self._unwrap(result)[0]

    async def wait_for_email_or_none(
        self, email_filter: EmailFilter = MATCH_ALL, timeout: int = DEFAULT_WAIT_TIMEOUT_MS
    ) -> Email | None:
        """Like ``wait_for_email`` but returns None on timeout."""
        result = await self.wait(email_filter, timeout)
        if result.status is WaitStatus.TIMEOUT:
            return None
        return self._unwrap(result)[0]

    async def wait_for_email_count(
        self,
        count: int,
        email_filter: EmailFilter = MATCH_ALL,
        timeout: int = DEFAULT_WAIT_TIMEOUT_MS,
    ) -> list[Email]:
        """Wait until ``count`` matching emails have been observed.

        Raises:
            TimeoutError: If the count was not reached; the message includes how many were seen.
        """
        result = await self.wait(email_filter, timeout, count=count)
        if result.status is WaitStatus.TIMEOUT:
            raise TimeoutError(
                f"Timeout waiting for {count} emails after {timeout}ms (got {len(result.emails)})"
            )
        return self._unwrap(result)

    @staticmethod
    def _unwrap(result: WaitResult) -> list[Email]:
        if result.status is WaitStatus.ERROR:
            raise result.error or StrategyError("Wait failed")
        return result.emails

    def on_new_email(
        self, callback: EmailCallback, *, mark_existing_seen: bool = True
    ) -> Subscription:
        """Invoke ``callback`` once for every new email.

        Args:
            callback: Sync or async function receiving each Email.
            mark_existing_seen: If False, emails already held are delivered first.
        """
        if self._closed:
            raise StrategyError("Inbox is closed")
        subscription = Subscription(callback, self._report)
        subscription._start()
        self._tracker.subscribe(subscription._offer, replay=not mark_existing_seen)
        self._subscriptions.append(subscription)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        self._tracker.unsubscribe(subscription._offer)
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        await subscription._stop()

    def fail(self, error: BaseException) -> None:
        """Resolve every pending wait with an ERROR result."""
        for waiter in list(self._waiters):
            waiter.fail(error)

    async def close(self) -> None:
        """Fail pending waits and stop every subscription."""
        if self._closed:
            return
        self._closed = True
        self.fail(StrategyError("Inbox is closed"))
        for subscription in list(self._subscriptions):
            await self.unsubscribe(subscription)

    def _report(self, error: BaseException) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception as callback_error:
            logger.debug("Error in error callback: %s", callback_error, exc_info=True)
