"""Delivery strategies for pqinbox."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..types import ClientConfig, DeliveryStrategyType
from .delivery_strategy import DeliveryStrategy
from .polling_strategy import AdaptiveInterval, PollingStrategy
from .sse_strategy import SSEState, SSEStrategy

if TYPE_CHECKING:
    from ..http import ApiClient
    from ..tracker import InboxStateTracker


def create_strategy(
    config: ClientConfig,
    api_client: ApiClient,
    tracker: InboxStateTracker,
    email_address: str,
    inbox_hash: str,
) -> DeliveryStrategy:
    """Build the delivery strategy selected by ``config.strategy``."""
    if config.strategy == DeliveryStrategyType.SSE:
        return SSEStrategy(api_client, tracker, email_address, inbox_hash, config.sse)
    return PollingStrategy(api_client, tracker, email_address, inbox_hash, config.polling)


__all__ = [
    "AdaptiveInterval",
    "DeliveryStrategy",
    "PollingStrategy",
    "SSEState",
    "SSEStrategy",
    "create_strategy",
]
