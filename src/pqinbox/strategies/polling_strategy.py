"""Polling delivery strategy for pqinbox."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from typing import TYPE_CHECKING

from ..errors import InboxNotFoundError, StrategyError
from ..types import PollingConfig
from .delivery_strategy import DeliveryStrategy

logger = logging.getLogger("pqinbox")

if TYPE_CHECKING:
    from ..http import ApiClient
    from ..tracker import InboxStateTracker


class AdaptiveInterval:
    """Backoff bookkeeping for the polling loop.

    After a poll with no new emails the interval grows by ``backoff_multiplier``
    up to ``max_backoff``; any new email resets it to ``initial_interval``.
    All values are milliseconds.
    """

    def __init__(self, config: PollingConfig, rng: random.Random | None = None) -> None:
        self._config = config
        self._rng = rng or random.Random()
        self._current: float = config.initial_interval

    @property
    def current(self) -> float:
        """The interval before jitter."""
        return self._current

    def record(self, new_count: int) -> None:
        if new_count > 0:
            self._current = self._config.initial_interval
        else:
            self._current = min(
                self._current * self._config.backoff_multiplier,
                self._config.max_backoff,
            )

    def next_delay(self) -> float:
        """The interval with uniform jitter of +/- ``jitter_factor`` applied."""
        spread = self._current * self._config.jitter_factor
        return self._current + self._rng.uniform(-spread, spread)

    def reset(self) -> None:
        self._current = self._config.initial_interval


class PollingStrategy(DeliveryStrategy):
    """Polling-based delivery with adaptive interval.

    Each cycle fetches the sync status and only lists and fetches emails when
    the server's hash changed. ``stop`` takes effect at the next sleep; an
    in-flight request is allowed to finish.
    """

    def __init__(
        self,
        api_client: ApiClient,
        tracker: InboxStateTracker,
        email_address: str,
        inbox_hash: str,
        config: PollingConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        super().__init__(api_client, tracker, email_address, inbox_hash)
        self._config = config or PollingConfig()
        self._interval = AdaptiveInterval(self._config, rng)
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._stopped = False

    @property
    def interval(self) -> AdaptiveInterval:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self._stopped:
            raise StrategyError("Polling strategy was stopped and cannot be restarted")
        if self.running:
            return
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        self._stopped = True
        self._stop_event.set()
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

    async def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                new_count = await self.reconcile()
            except InboxNotFoundError as e:
                logger.error("Inbox %s no longer exists, stopping polling", self._email_address)
                self._report_error(e)
                return
            except Exception as e:
                logger.warning(
                    "Error polling inbox %s: %s", self._email_address, e, exc_info=True
                )
                self._report_error(e)
                new_count = 0

            self._interval.record(new_count)
            delay = self._interval.next_delay()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay / 1000)
