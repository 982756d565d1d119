"""SSE (Server-Sent Events) delivery strategy for pqinbox."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx
from httpx_sse import aconnect_sse

from ..errors import SSEError, StrategyError
from ..types import SSEConfig
from ..verifier import has_content
from .delivery_strategy import DeliveryStrategy

logger = logging.getLogger("pqinbox")

if TYPE_CHECKING:
    from ..http import ApiClient
    from ..tracker import InboxStateTracker


class SSEState(str, Enum):
    """Connection states. A strategy is CLOSED before start and after giving up."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class SSEStrategy(DeliveryStrategy):
    """Server-Sent Events delivery for one inbox.

    Holds one long-lived stream on ``/api/events``. Each frame either carries a
    full envelope or points at an email id, which is then fetched. Delivery over
    the stream is at-most-once, so every successful (re)connection runs one
    reconciliation pass to pick up emails that arrived while disconnected.

    On error or server close the strategy waits ``reconnect_interval`` and
    reconnects. After ``max_reconnect_attempts`` consecutive failures it moves
    to CLOSED and reports an ``SSEError`` through ``on_error``.
    """

    def __init__(
        self,
        api_client: ApiClient,
        tracker: InboxStateTracker,
        email_address: str,
        inbox_hash: str,
        config: SSEConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the SSE strategy.

        Args:
            api_client: Control-plane client; also supplies base URL and API key.
            tracker: Tracker receiving every envelope.
            email_address: Inbox address used for control-plane calls.
            inbox_hash: Inbox identifier used to scope the event stream.
            config: SSE configuration options.
            transport: Optional httpx transport for the stream connection.
        """
        super().__init__(api_client, tracker, email_address, inbox_hash)
        self._config = config or SSEConfig()
        self._transport = transport
        self._state = SSEState.CLOSED
        self._failures = 0
        self._last_event_id: str | None = None
        self._connected = asyncio.Event()
        self._closed = asyncio.Event()
        self._client: httpx.AsyncClient | None = None
        self._task: asyncio.Task[None] | None = None
        self._started = False
        self._stopping = False

    @property
    def state(self) -> SSEState:
        return self._state

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_event_id(self) -> str | None:
        return self._last_event_id

    def _set_state(self, state: SSEState) -> None:
        if state is self._state:
            return
        logger.debug("SSE %s: %s -> %s", self._email_address, self._state.value, state.value)
        self._state = state
        if state is SSEState.CONNECTED:
            self._connected.set()
        else:
            self._connected.clear()
        if state is SSEState.CLOSED:
            self._closed.set()

    async def start(self) -> None:
        if self._started:
            if self._stopping or self._state is SSEState.CLOSED:
                raise StrategyError("SSE strategy was closed and cannot be restarted")
            return
        self._started = True
        api_config = self._api_client.config
        self._client = httpx.AsyncClient(
            base_url=api_config.base_url,
            headers={"X-API-Key": api_config.api_key},
            # No read timeout: the stream stays open indefinitely
            timeout=httpx.Timeout(None, connect=self._config.connect_timeout / 1000),
            transport=self._transport,
        )
        self._set_state(SSEState.CONNECTING)
        self._task = asyncio.create_task(self._run())
        self._task.add_done_callback(self._on_task_done)

    async def stop(self) -> None:
        """Close the stream and halt reconnection."""
        self._stopping = True
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._set_state(SSEState.CLOSED)

    async def wait_connected(self, timeout: float) -> bool:
        """Wait until the stream is connected.

        Args:
            timeout: Maximum wait in milliseconds.

        Returns:
            True if connected, False on timeout or if the strategy closed.
        """
        if self._connected.is_set():
            return True
        connected = asyncio.ensure_future(self._connected.wait())
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait(
                {connected, closed}, timeout=timeout / 1000, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            connected.cancel()
            closed.cancel()
        # The stream may already have dropped again; reaching CONNECTED is what counts
        return connected.done() and not connected.cancelled()

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("SSE task for %s crashed: %s", self._email_address, exc)
            self._set_state(SSEState.CLOSED)
            self._report_error(exc)

    async def _run(self) -> None:
        max_attempts = self._config.max_reconnect_attempts
        while not self._stopping:
            error: BaseException
            try:
                await self._connect_and_listen()
                error = SSEError("SSE stream closed by server")
            except Exception as e:
                error = e
            if self._stopping:
                return

            self._failures += 1
            if self._failures >= max_attempts:
                final = SSEError(f"Max reconnection attempts ({max_attempts}) exceeded")
                final.__cause__ = error
                logger.error(
                    "SSE for %s gave up after %d attempts: %s",
                    self._email_address,
                    self._failures,
                    error,
                )
                self._set_state(SSEState.CLOSED)
                self._report_error(final)
                return

            self._set_state(SSEState.RECONNECTING)
            logger.warning(
                "SSE for %s disconnected (%s), reconnecting in %dms (attempt %d/%d)",
                self._email_address,
                error,
                self._config.reconnect_interval,
                self._failures,
                max_attempts,
            )
            await asyncio.sleep(self._config.reconnect_interval / 1000)
            self._set_state(SSEState.CONNECTING)

    async def _connect_and_listen(self) -> None:
        if self._client is None:  # pragma: no cover
            raise StrategyError("SSE strategy is not started")

        headers: dict[str, str] = {}
        if self._last_event_id is not None:
            headers["Last-Event-ID"] = self._last_event_id

        async with aconnect_sse(
            self._client,
            "GET",
            "/api/events",
            params={"inboxes": self._inbox_hash},
            headers=headers,
        ) as event_source:
            status_code = event_source.response.status_code
            if status_code >= 400:
                raise SSEError(f"SSE connection failed with HTTP {status_code}")

            self._failures = 0
            self._set_state(SSEState.CONNECTED)
            await self._reconcile_after_connect()

            async for event in event_source.aiter_sse():
                if event.id:
                    self._last_event_id = event.id
                if event.data:
                    await self._handle_event(event.data)

    async def _reconcile_after_connect(self) -> None:
        try:
            await self.reconcile()
        except Exception as e:
            logger.warning("Reconciliation for %s failed: %s", self._email_address, e)
            self._report_error(e)

    async def _handle_event(self, data: str) -> None:
        try:
            payload: Any = json.loads(data)
        except json.JSONDecodeError as e:
            logger.debug("Failed to parse SSE event as JSON: %s", e)
            return
        if not isinstance(payload, dict):
            return

        inbox_id = payload.get("inboxId")
        if inbox_id is not None and inbox_id != self._inbox_hash:
            return

        if "id" in payload and has_content(payload):
            self._apply(payload)  # type: ignore[arg-type]
            return

        email_id = payload.get("emailId")
        if not isinstance(email_id, str) or not email_id:
            return
        try:
            await self.fetch_and_apply(email_id)
        except Exception as e:
            logger.warning("Error fetching email %s from SSE event: %s", email_id, e)
            self._report_error(e)
