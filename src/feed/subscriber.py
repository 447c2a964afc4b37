"""
Feed BaseSubscriber - Abstract base class for change-feed consumers.

Registers handlers on any feed source exposing `on(event_type, callback)`
(ChangeFeedClient, LocalChangeFeed) and parses raw payloads into typed
CardChangeEvent objects.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Protocol

from pydantic import ValidationError as PydanticValidationError

from models import CardChangeEvent

from .normalizer import parse_card_change

logger = logging.getLogger(__name__)


class FeedSource(Protocol):
    """Anything that dispatches normalized feed events to listeners."""

    def on(self, event_type: str, callback: Callable[[dict], None]) -> Callable[[], None]: ...

    def is_connected(self) -> bool: ...


class BaseSubscriber(ABC):
    """
    Abstract base class for change-feed subscribers.

    Required methods (must implement):
    - on_card_change(event: CardChangeEvent)
    - on_connection_change(connected: bool)

    Optional methods (default: log and drop):
    - on_invalid_event(raw_event: dict, error: Exception)
    - on_raw_event(event: dict)

    Usage:
        class Printer(BaseSubscriber):
            def on_card_change(self, event):
                print(event.type, event.entity_id)

            def on_connection_change(self, connected):
                print(f"Connected: {connected}")

        subscriber = Printer(client)
    """

    def __init__(self, feed: FeedSource):
        """
        Initialize subscriber with a feed source.

        Args:
            feed: ChangeFeedClient or LocalChangeFeed to subscribe to
        """
        self._feed = feed
        self._unsubscribe_functions: list[Callable[[], None]] = []
        self._setup_handlers()

    def _setup_handlers(self) -> None:
        """Register event handlers with the feed."""
        self._register("card.change", self._handle_card_change)
        self._register("connection", self._handle_connection)

        if self._is_overridden("on_raw_event"):
            self._register("*", self._handle_wildcard)

    def _is_overridden(self, method_name: str) -> bool:
        """Check if a method is overridden from BaseSubscriber."""
        base_method = getattr(BaseSubscriber, method_name, None)
        instance_method = getattr(self, method_name, None)
        if base_method is None or instance_method is None:
            return False
        return instance_method.__func__ is not base_method

    def _register(self, event_type: str, handler: Callable) -> None:
        """Register handler and store unsubscribe function."""
        unsub = self._feed.on(event_type, handler)
        self._unsubscribe_functions.append(unsub)

    def _handle_card_change(self, raw_event: dict) -> None:
        """Parse and forward card.change event."""
        try:
            event = parse_card_change(raw_event.get("data") or {}, seq=raw_event.get("seq"))
        except (KeyError, TypeError, ValueError, PydanticValidationError) as e:
            self.on_invalid_event(raw_event, e)
            return
        self.on_card_change(event)

    def _handle_connection(self, raw_event: dict) -> None:
        """Forward connection state change."""
        self.on_connection_change(bool(raw_event.get("connected", False)))

    def _handle_wildcard(self, raw_event: dict) -> None:
        """Forward events that no specific handler covers."""
        if raw_event.get("type") not in ("card.change", "connection"):
            self.on_raw_event(raw_event)

    def unsubscribe(self) -> None:
        """Remove all registered handlers."""
        for unsub in self._unsubscribe_functions:
            unsub()
        self._unsubscribe_functions.clear()

    @property
    def subscribed(self) -> bool:
        return bool(self._unsubscribe_functions)

    # =========================================================================
    # REQUIRED METHODS (must implement)
    # =========================================================================

    @abstractmethod
    def on_card_change(self, event: CardChangeEvent) -> None:
        """
        Handle card.change event.

        Called for every insert/update/delete on the cards table, for all
        projects.
        """
        ...

    @abstractmethod
    def on_connection_change(self, connected: bool) -> None:
        """
        Handle connection state change.

        Args:
            connected: True if connected, False if disconnected
        """
        ...

    # =========================================================================
    # OPTIONAL METHODS
    # =========================================================================

    def on_invalid_event(self, raw_event: dict, error: Exception) -> None:
        """Malformed card.change payload. Logged and dropped by default."""
        logger.warning(f"Dropping malformed card.change (seq={raw_event.get('seq')}): {error}")

    def on_raw_event(self, event: dict) -> None:  # noqa: B027
        """
        Handle unknown/raw events (optional).

        Args:
            event: Raw event dict
        """
