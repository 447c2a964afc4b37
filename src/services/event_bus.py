"""
Event Bus Service - engine lifecycle notifications

Key behaviors:
- Weak references for automatic subscriber cleanup (WeakMethod for bound methods)
- No locks held during callback execution (deadlock prevention)
- Callback ID tracking for proper unsubscribe
- Queue capacity warnings at 80%
- Graceful shutdown with retry loop

Each MatrixEngine owns its own bus; there is no process-wide instance.
"""

import logging
import queue
import threading
import time
import weakref
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class Events(Enum):
    """Engine notifications published on the bus"""

    # Project scope
    PROJECT_OPENED = "project.opened"
    PROJECT_CLOSED = "project.closed"
    PROJECT_RESYNCED = "project.resynced"

    # Card store
    CARD_CHANGED = "card.changed"

    # Optimistic mutations
    MUTATION_CONFIRMED = "mutation.confirmed"
    MUTATION_ROLLED_BACK = "mutation.rolled_back"
    MUTATION_LATE_SUCCESS = "mutation.late_success"

    # Locks
    LOCK_ACQUIRED = "lock.acquired"
    LOCK_DENIED = "lock.denied"
    LOCK_RELEASED = "lock.released"

    # Drag
    DRAG_REFUSED = "drag.refused"

    # Change feed
    FEED_CONNECTED = "feed.connected"
    FEED_DISCONNECTED = "feed.disconnected"
    FEED_EVENT_DROPPED = "feed.event_dropped"


class EventBus:
    """
    Thread-safe event bus with deadlock prevention.

    Usage:
        bus = EventBus()
        bus.start()
        bus.subscribe(Events.CARD_CHANGED, handler)
        bus.publish(Events.CARD_CHANGED, {"card_id": "c1"})
        bus.stop()

    Callbacks receive {"name": event.value, "data": data}.
    """

    def __init__(self, max_queue_size: int = 5000):
        # Subscribers stored as (callback_id, weak_ref_or_callback) tuples
        self._subscribers: dict[Events, list[tuple[int, Any]]] = {}

        # Track callbacks by ID for proper unsubscribe
        self._callback_ids: dict[Events, dict[int, Any]] = {}

        self._queue = queue.Queue(maxsize=max_queue_size)
        self._processing = False
        self._thread = None

        # Lock only for subscription management, not during callback execution
        self._sub_lock = threading.RLock()

        self._stats = {
            "events_published": 0,
            "events_processed": 0,
            "events_dropped": 0,
            "errors": 0,
        }

        logger.debug(f"EventBus initialized with queue size {max_queue_size}")

    @property
    def running(self) -> bool:
        return self._processing

    def start(self):
        """Start event processing thread"""
        if not self._processing:
            self._processing = True
            self._thread = threading.Thread(
                target=self._process_events, name="matrix-event-bus", daemon=True
            )
            self._thread.start()
            logger.debug("EventBus started")

    def stop(self):
        """
        Stop event processing.

        Uses retry loop with queue draining to ensure sentinel delivery.
        """
        if not self._processing:
            return

        self._processing = False

        max_attempts = 10
        sentinel_sent = False

        for attempt in range(max_attempts):
            try:
                self._queue.put(None, timeout=0.2)  # Sentinel to wake thread
                sentinel_sent = True
                break
            except queue.Full:
                # Drain one item to make space, then retry
                try:
                    self._queue.get_nowait()
                    self._queue.task_done()
                    logger.debug(f"Drained queue item on shutdown attempt {attempt + 1}")
                except queue.Empty:
                    pass
                time.sleep(0.05)

        if not sentinel_sent:
            logger.warning("Failed to send shutdown sentinel after max attempts")

        if self._thread:
            self._thread.join(timeout=3.0)
            if self._thread.is_alive():
                logger.error("EventBus thread did not stop cleanly within timeout")
            self._thread = None

        logger.debug("EventBus stopped")

    def subscribe(self, event: Events, callback: Callable, weak: bool = True):
        """
        Subscribe to an event.

        Args:
            event: Event to subscribe to
            callback: Callback function
            weak: Use weak reference for automatic cleanup (default True)
        """
        with self._sub_lock:
            subscribers = self._subscribers.setdefault(event, [])
            ids = self._callback_ids.setdefault(event, {})

            cb_id = self._callback_id(callback)

            existing = ids.get(cb_id)
            if existing is not None:
                if self._resolve_callback(existing) is not None:
                    logger.debug(f"Already subscribed to {event.value}, skipping duplicate")
                    return
                # Stale weakref entry
                ids.pop(cb_id, None)
                subscribers[:] = [(cid, ref) for cid, ref in subscribers if cid != cb_id]

            ref = self._make_ref(callback) if weak else callback
            subscribers.append((cb_id, ref))
            ids[cb_id] = ref
            logger.debug(f"Subscribed to {event.value}")

    def unsubscribe(self, event: Events, callback: Callable):
        """Unsubscribe from an event using callback ID matching."""
        with self._sub_lock:
            if event not in self._subscribers:
                return

            cb_id = self._callback_id(callback)
            if event in self._callback_ids:
                self._callback_ids[event].pop(cb_id, None)

            self._subscribers[event] = [
                (cid, ref) for cid, ref in self._subscribers[event] if cid != cb_id
            ]
            if not self._subscribers[event]:
                self._subscribers.pop(event, None)
                self._callback_ids.pop(event, None)
            logger.debug(f"Unsubscribed from {event.value}")

    def publish(self, event: Events, data: Any = None):
        """Queue an event for all subscribers."""
        try:
            self._queue.put_nowait((event, data))
            self._stats["events_published"] += 1

            qsize = self._queue.qsize()
            max_size = self._queue.maxsize
            if max_size > 0 and qsize > max_size * 0.8:
                logger.warning(
                    f"EventBus queue at {qsize}/{max_size} ({qsize / max_size * 100:.0f}% capacity)"
                )
        except queue.Full:
            self._stats["events_dropped"] += 1
            logger.warning(f"Event queue full, dropping event: {event.value}")

    def wait_idle(self, timeout: float = 1.0) -> bool:
        """Block until every queued event was dispatched (or timeout)."""
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.005)
        return True

    def _process_events(self):
        """Background thread to process events"""
        while self._processing:
            try:
                item = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue

            try:
                if item is None:  # Sentinel
                    break
                event, data = item
                self._dispatch(event, data)
            except Exception as e:
                logger.error(f"Error processing event: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    def _dispatch(self, event: Events, data: Any):
        """Dispatch event to subscribers (lock released before callbacks run)."""
        callbacks_to_call = []
        with self._sub_lock:
            if event in self._subscribers:
                alive_entries = []
                for cb_id, ref in self._subscribers[event]:
                    callback = self._resolve_callback(ref)
                    if callback:
                        callbacks_to_call.append(callback)
                        alive_entries.append((cb_id, ref))
                    elif event in self._callback_ids:
                        self._callback_ids[event].pop(cb_id, None)
                self._subscribers[event] = alive_entries

        for callback in callbacks_to_call:
            try:
                callback({"name": event.value, "data": data})
                self._stats["events_processed"] += 1
            except Exception as e:
                self._stats["errors"] += 1
                logger.error(f"Error in callback for {event.value}: {e}", exc_info=True)

    @staticmethod
    def _callback_id(callback: Callable) -> int:
        # Bound methods are recreated on each attribute access; key on (self, func)
        if hasattr(callback, "__self__") and hasattr(callback, "__func__"):
            return hash((id(callback.__self__), id(callback.__func__)))
        return id(callback)

    @staticmethod
    def _make_ref(callback: Callable):
        try:
            if hasattr(callback, "__self__") and hasattr(callback, "__func__"):
                return weakref.WeakMethod(callback)
            return weakref.ref(callback)
        except TypeError:
            # Not weak-referenceable (builtins, partials): keep a strong reference
            return callback

    def _resolve_callback(self, ref):
        """Resolve a weak or direct callback reference."""
        if isinstance(ref, weakref.ReferenceType):
            return ref()
        if callable(ref):
            return ref
        return None

    def get_stats(self) -> dict[str, Any]:
        """Get event bus statistics including processing counters."""
        with self._sub_lock:
            stats = {
                "subscriber_count": sum(len(entries) for entries in self._subscribers.values()),
                "event_types": len(self._subscribers),
                "queue_size": self._queue.qsize(),
                "processing": self._processing,
            }
            stats.update(self._stats)
            return stats

    def has_subscribers(self, event: Events) -> bool:
        """Return True if there are any live subscribers for an event."""
        with self._sub_lock:
            entries = self._subscribers.get(event) or []
            return any(self._resolve_callback(ref) is not None for _, ref in entries)

    def clear_all(self):
        """Clear all subscribers."""
        with self._sub_lock:
            self._subscribers.clear()
            self._callback_ids.clear()
