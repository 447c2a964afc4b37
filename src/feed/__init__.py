"""Change feed - WebSocket client and subscriber base for card row changes."""

from feed.client import ChangeFeedClient, ClientMetrics
from feed.config import FeedConfig
from feed.connection import ConnectionState, ConnectionStatus
from feed.normalizer import (
    ChangeNormalizer,
    NormalizedEvent,
    parse_card_change,
    row_change_message,
)
from feed.subscriber import BaseSubscriber, FeedSource

__all__ = [
    "FeedConfig",
    "ConnectionState",
    "ConnectionStatus",
    "ChangeNormalizer",
    "NormalizedEvent",
    "parse_card_change",
    "row_change_message",
    "ChangeFeedClient",
    "ClientMetrics",
    "BaseSubscriber",
    "FeedSource",
]
