"""
In-memory durable store and its change feed

InMemoryDurableStore keeps flat `cards` rows in a dict and publishes every
committed change to a LocalChangeFeed, which dispatches the same normalized
events as ChangeFeedClient. Used by the CLI demo and the test suite; failures,
latency and dropped connections can be injected.
"""

import asyncio
import logging
import uuid
from collections import deque
from collections.abc import Callable
from datetime import datetime
from typing import Any

from feed.connection import ConnectionState
from feed.normalizer import ChangeNormalizer, row_change_message
from models import Card, ChangeType, utc_now

from sources.durable_store import DurableStore, StoreError, StoreErrorKind

logger = logging.getLogger(__name__)


class LocalChangeFeed:
    """
    In-process change feed with the ChangeFeedClient listener API.

    Messages published while disconnected are lost, like a real socket, so
    subscribers must resync after a reconnect.
    """

    def __init__(self, table: str = "cards"):
        self.table = table
        self.state = ConnectionState()
        self._normalizer = ChangeNormalizer(table=table)
        self._listeners: dict[str, set[Callable]] = {}
        self.dropped_messages = 0

    def is_connected(self) -> bool:
        return self.state.is_connected

    def on(self, event_type: str, callback: Callable[[dict], None]) -> Callable[[], None]:
        self._listeners.setdefault(event_type, set()).add(callback)

        def unsubscribe():
            if event_type in self._listeners:
                self._listeners[event_type].discard(callback)

        return unsubscribe

    def listener_count(self, event_type: str) -> int:
        return len(self._listeners.get(event_type, ()))

    def _emit(self, event_type: str, data: dict) -> None:
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

    def publish(self, message: dict) -> None:
        """Deliver a raw feed message (dropped while disconnected)."""
        if not self.is_connected():
            self.dropped_messages += 1
            return
        event = self._normalizer.normalize(message)
        self._emit(event.type, event.to_dict())

    # ========== Connection lifecycle ==========

    async def connect(self) -> None:
        self.restore_connection()

    async def disconnect(self) -> None:
        if self.is_connected():
            self.drop_connection()

    def drop_connection(self) -> None:
        self.state.set_disconnected()
        self._emit("connection", {"type": "connection", "connected": False, "code": 1006})

    def restore_connection(self) -> None:
        self.state.set_connected()
        self._emit(
            "connection",
            {"type": "connection", "connected": True, "reconnect": self.state.reconnects > 0},
        )


class InMemoryDurableStore(DurableStore):
    """
    DurableStore backed by a dict of rows.

    Args:
        feed: Feed that receives a row-change message for every commit
        latency: Seconds each call waits before committing
        clock: Source of commit timestamps
    """

    def __init__(
        self,
        feed: LocalChangeFeed | None = None,
        latency: float = 0.0,
        clock: Callable[[], datetime] | None = None,
    ):
        self.feed = feed
        self.latency = latency
        self._clock = clock or utc_now
        self._rows: dict[str, dict[str, Any]] = {}
        self._failures: deque[tuple[str | None, StoreError]] = deque()
        self.forbidden_projects: set[str] = set()
        self.calls: list[str] = []

    # ========== Test controls ==========

    def fail_next(
        self, kind: StoreErrorKind, times: int = 1, operation: str | None = None, message: str = ""
    ) -> None:
        """Make the next `times` calls (of `operation`, if given) raise StoreError(kind)."""
        for _ in range(times):
            self._failures.append((operation, StoreError(kind, message or f"injected {kind.value}")))

    def seed(self, *cards: Card) -> None:
        """Insert rows without publishing (pre-existing data)."""
        for card in cards:
            self._rows[card.id] = card.to_row()

    def row(self, card_id: str) -> dict[str, Any] | None:
        row = self._rows.get(card_id)
        return dict(row) if row is not None else None

    def set_lock_columns(
        self, card_id: str, holder_id: str | None, acquired_at: datetime | None = None
    ) -> None:
        """Simulate another client publishing (or clearing) an edit lock."""
        row = self._require(card_id)
        row["editing_by"] = holder_id
        row["editing_at"] = (acquired_at or self._clock()).isoformat() if holder_id else None
        self._commit(ChangeType.UPDATE, row)

    # ========== DurableStore ==========

    async def create_card(self, payload: dict[str, Any]) -> Card:
        await self._enter("create")
        project_id = payload.get("project_id")
        if not project_id:
            raise StoreError(StoreErrorKind.CONFLICT, "project_id is required")
        self._check_project(project_id)

        card_id = str(payload.get("id") or uuid.uuid4())
        if card_id in self._rows:
            raise StoreError(StoreErrorKind.CONFLICT, f"card {card_id} already exists")

        now = self._clock().isoformat()
        row = {k: v for k, v in payload.items() if k not in ("version",)}
        row.update({"id": card_id, "created_at": now, "updated_at": now, "version": 1})
        self._rows[card_id] = row
        self._commit(ChangeType.INSERT, row)
        return Card.from_row(row)

    async def update_card(self, card_id: str, partial: dict[str, Any]) -> Card:
        await self._enter("update")
        row = self._require(card_id)
        self._check_project(row["project_id"])

        for key, value in partial.items():
            if key in ("id", "project_id", "created_at", "version"):
                continue
            row[key] = value
        row["version"] = int(row.get("version") or 0) + 1
        row["updated_at"] = self._clock().isoformat()
        self._commit(ChangeType.UPDATE, row)
        return Card.from_row(row)

    async def delete_card(self, card_id: str) -> None:
        await self._enter("delete")
        row = self._require(card_id)
        self._check_project(row["project_id"])
        del self._rows[card_id]
        self._commit(ChangeType.DELETE, None, old_record={"id": card_id, "project_id": row["project_id"]})

    async def get_cards_by_project(self, project_id: str) -> list[Card]:
        await self._enter("list")
        self._check_project(project_id)
        return [Card.from_row(r) for r in self._rows.values() if r.get("project_id") == project_id]

    # ========== Internals ==========

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if self.latency:
            await asyncio.sleep(self.latency)
        for index, (op, error) in enumerate(self._failures):
            if op is None or op == operation:
                del self._failures[index]
                logger.debug(f"Injected failure for {operation}: {error!r}")
                raise error

    def _require(self, card_id: str) -> dict[str, Any]:
        row = self._rows.get(card_id)
        if row is None:
            raise StoreError(StoreErrorKind.NOT_FOUND, f"card {card_id} not found")
        return row

    def _check_project(self, project_id: str) -> None:
        if project_id in self.forbidden_projects:
            raise StoreError(StoreErrorKind.FORBIDDEN, f"no access to project {project_id}")

    def _commit(
        self, change: ChangeType, row: dict[str, Any] | None, old_record: dict | None = None
    ) -> None:
        if self.feed is None:
            return
        record = dict(row) if row is not None else None
        self.feed.publish(
            row_change_message(
                change, record, old_record, table=self.feed.table, commit_timestamp=self._clock()
            )
        )
