"""
Change Feed Client - Async WebSocket client for the card change stream.

Provides:
- Async WebSocket connection with exponential backoff reconnection
- Table-wide subscription (project filtering happens in the subscriber)
- Event subscription/unsubscription with wildcard support
- Event buffering for late subscribers
- Connection metrics tracking
"""

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import websockets

from .config import FeedConfig
from .connection import ConnectionState
from .normalizer import ChangeNormalizer

logger = logging.getLogger(__name__)


@dataclass
class ClientMetrics:
    """Connection and throughput metrics for ChangeFeedClient."""

    connected: bool = False
    message_count: int = 0
    parse_errors: int = 0
    last_message_time: int | None = None
    connection_attempts: int = 0
    last_connected_time: int | None = None

    def to_dict(self) -> dict:
        """Serialize metrics to dict."""
        return {
            "connected": self.connected,
            "message_count": self.message_count,
            "parse_errors": self.parse_errors,
            "last_message_time": self.last_message_time,
            "connection_attempts": self.connection_attempts,
            "last_connected_time": self.last_connected_time,
        }


class ChangeFeedClient:
    """
    Async WebSocket client for the card change feed.

    Emits:
        "card.change": normalized row change ({"type", "ts", "seq", "data"})
        "connection": {"connected": bool, ...} on every connect/disconnect

    Usage:
        client = ChangeFeedClient(FeedConfig())
        client.on("card.change", lambda e: print(e))
        task = asyncio.create_task(client.connect())
        ...
        await client.disconnect()
    """

    def __init__(
        self,
        feed_config: FeedConfig | None = None,
        url: str | None = None,
        max_buffer_size: int = 10,
    ):
        """
        Initialize change-feed client.

        Args:
            feed_config: Endpoint, table and backoff settings
            url: Override for the WebSocket URL
            max_buffer_size: Maximum events to buffer per event type
        """
        self.config = feed_config or FeedConfig()
        self.url = url or self.config.ws_url
        self.table = self.config.table
        self.reconnect_delay = self.config.reconnect_delay
        self.max_reconnect_delay = self.config.max_reconnect_delay
        self.reconnect_multiplier = self.config.reconnect_multiplier
        self.max_buffer_size = max_buffer_size

        # Connection state
        self._ws = None
        self._intentional_close = False
        self._current_reconnect_delay = self.reconnect_delay
        self.state = ConnectionState()

        self._normalizer = ChangeNormalizer(table=self.table)

        # Event listeners: event_type -> set of callbacks
        self._listeners: dict[str, set[Callable]] = {}

        # Recent event buffer: event_type -> list of events
        self._recent_events: dict[str, list[dict]] = {}

        self._metrics = ClientMetrics()

    def is_connected(self) -> bool:
        """Check if client is currently connected."""
        return self.state.is_connected

    def get_metrics(self) -> ClientMetrics:
        return self._metrics

    def on(self, event_type: str, callback: Callable[[dict], None]) -> Callable[[], None]:
        """
        Register an event listener.

        Args:
            event_type: Event type to listen for ('card.change', 'connection', '*' for all)
            callback: Function to call when event is received

        Returns:
            Unsubscribe function
        """
        if event_type not in self._listeners:
            self._listeners[event_type] = set()

        self._listeners[event_type].add(callback)

        def unsubscribe():
            if event_type in self._listeners:
                self._listeners[event_type].discard(callback)

        return unsubscribe

    def _emit(self, event_type: str, data: dict) -> None:
        """Emit event to all registered listeners (specific, then wildcard)."""
        for callback in list(self._listeners.get(event_type, ())):
            try:
                callback(data)
            except Exception as e:
                logger.error(f"Error in listener for {event_type}: {e}")

        for callback in list(self._listeners.get("*", ())):
            try:
                callback(data)
            except Exception as e:
                logger.error(f"Error in wildcard listener: {e}")

    def _handle_message(self, message: dict) -> None:
        """
        Normalize and dispatch one incoming feed message.

        Args:
            message: Parsed JSON message
        """
        event = self._normalizer.normalize(message)

        self._metrics.message_count += 1
        self._metrics.last_message_time = event.ts

        if event.type == "feed.error":
            logger.warning(f"[Feed] Server error: {event.data}")

        payload = event.to_dict()
        buffer = self._recent_events.setdefault(event.type, [])
        buffer.append(payload)
        if len(buffer) > self.max_buffer_size:
            buffer.pop(0)

        self._emit(event.type, payload)

    def get_recent_events(self, event_type: str) -> list[dict]:
        """Recent events of a type (up to max_buffer_size), for late subscribers."""
        return self._recent_events.get(event_type, [])

    def _on_connected(self) -> None:
        """Handle successful connection."""
        self.state.set_connected()
        self._current_reconnect_delay = self.reconnect_delay
        self._metrics.connected = True
        self._metrics.last_connected_time = int(time.time() * 1000)

        logger.info(f"[Feed] Connected (connection #{self.state.connect_count})")
        self._emit(
            "connection",
            {"type": "connection", "connected": True, "reconnect": self.state.reconnects > 0},
        )

    def _on_disconnected(self, code: int = 1000, reason: str = "") -> None:
        """Handle disconnection."""
        was_connected = self.state.is_connected
        if code == 1000:
            self.state.set_disconnected()
        else:
            self.state.set_error(reason or f"closed with code {code}")
        self._metrics.connected = False

        if was_connected or code != 1000:
            logger.info(f"[Feed] Disconnected (code: {code})")
            self._emit(
                "connection",
                {"type": "connection", "connected": False, "code": code, "reason": reason},
            )

    async def _subscribe(self, ws) -> None:
        """Subscribe to every change on the table (no row filter)."""
        await ws.send(json.dumps({"type": "subscribe", "table": self.table, "event": "*"}))

    async def connect(self) -> None:
        """
        Connect and stream until disconnect() is called.

        Reconnects with exponential backoff both after a failed connect and
        after an established connection drops.
        """
        self._intentional_close = False

        while not self._intentional_close:
            self._metrics.connection_attempts += 1
            self.state.set_connecting()
            logger.info(f"[Feed] Connecting to {self.url}...")

            try:
                async with websockets.connect(self.url) as ws:
                    self._ws = ws
                    await self._subscribe(ws)
                    self._on_connected()
                    await self._read_loop(ws)
                self._on_disconnected()
            except asyncio.CancelledError:
                self._on_disconnected()
                raise
            except Exception as e:
                logger.error(f"[Feed] Connection failed: {e}")
                self._on_disconnected(code=1006, reason=str(e))
            finally:
                self._ws = None

            if not self._intentional_close:
                await self._backoff()

    async def _read_loop(self, ws) -> None:
        async for message in ws:
            try:
                data = json.loads(message)
            except json.JSONDecodeError as e:
                self._metrics.parse_errors += 1
                logger.error(f"[Feed] Failed to parse message: {e}")
                continue
            if not isinstance(data, dict):
                self._metrics.parse_errors += 1
                logger.error(f"[Feed] Unexpected message shape: {type(data).__name__}")
                continue
            self._handle_message(data)

    async def _backoff(self) -> None:
        """Wait before the next attempt, growing the delay."""
        delay = self._current_reconnect_delay
        logger.info(f"[Feed] Reconnecting in {delay:.1f}s...")

        await asyncio.sleep(delay)

        self._current_reconnect_delay = min(
            self._current_reconnect_delay * self.reconnect_multiplier,
            self.max_reconnect_delay,
        )

    async def disconnect(self) -> None:
        """Disconnect and stop reconnecting."""
        self._intentional_close = True

        if self._ws is not None:
            await self._ws.close()
            self._ws = None

        self.state.set_disconnected()
        self._metrics.connected = False
