"""Event normalizer for the change feed."""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from models import Card, CardChangeEvent, ChangeType


@dataclass
class NormalizedEvent:
    """Normalized feed event."""

    type: str
    ts: int  # Unix timestamp (ms)
    seq: int  # Sequence number
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Serialize to dict for listeners."""
        return {
            "type": self.type,
            "ts": self.ts,
            "seq": self.seq,
            "data": self.data,
        }


class ChangeNormalizer:
    """
    Transforms raw change-feed messages into normalized events.

    Input (row-change message from the database realtime channel):
        {
            "type": "postgres_changes",
            "payload": {
                "table": "cards",
                "eventType": "UPDATE",
                "new": {...},
                "old": {...},
                "commit_timestamp": "2025-10-01T12:05:00Z"
            }
        }

    Output: NormalizedEvent of type "card.change" whose data is
        {"change": "update", "record": {...}, "old_record": {...},
         "commit_timestamp": "..."}

    Control messages map to "feed.<type>"; anything else passes through as
    "raw.<type>".
    """

    # Event type mapping: realtime channel -> normalized change type
    EVENT_MAP = {
        "INSERT": ChangeType.INSERT.value,
        "UPDATE": ChangeType.UPDATE.value,
        "DELETE": ChangeType.DELETE.value,
    }

    CONTROL_TYPES = {"subscribed", "error", "heartbeat"}

    def __init__(self, table: str = "cards"):
        self.table = table
        self._seq = 0

    def normalize(self, raw: dict) -> NormalizedEvent:
        """
        Normalize a raw feed message.

        Args:
            raw: Parsed JSON message from the feed

        Returns:
            NormalizedEvent ready for dispatch
        """
        message_type = raw.get("type", "unknown")
        payload = raw.get("payload") or {}  # Handle None explicitly

        self._seq += 1

        if message_type == "postgres_changes":
            event_type, data = self._normalize_change(payload)
        elif message_type in self.CONTROL_TYPES:
            event_type, data = f"feed.{message_type}", payload
        else:
            event_type, data = f"raw.{message_type}", payload

        return NormalizedEvent(
            type=event_type,
            ts=int(time.time() * 1000),
            seq=self._seq,
            data=data,
        )

    def _normalize_change(self, payload: dict) -> tuple[str, dict]:
        table = payload.get("table")
        change = self.EVENT_MAP.get(str(payload.get("eventType", "")).upper())
        if table != self.table or change is None:
            return f"raw.{table}.{payload.get('eventType')}", payload
        return "card.change", {
            "change": change,
            "record": payload.get("new") or None,
            "old_record": payload.get("old") or None,
            "commit_timestamp": payload.get("commit_timestamp"),
        }


def row_change_message(
    change: ChangeType,
    record: dict | None,
    old_record: dict | None = None,
    table: str = "cards",
    commit_timestamp: datetime | None = None,
) -> dict:
    """Build a raw row-change message (as published by the database)."""
    return {
        "type": "postgres_changes",
        "payload": {
            "table": table,
            "eventType": change.value.upper(),
            "new": record or {},
            "old": old_record or {},
            "commit_timestamp": commit_timestamp.isoformat() if commit_timestamp else None,
        },
    }


def parse_card_change(data: dict[str, Any], seq: int | None = None) -> CardChangeEvent:
    """
    Build a typed CardChangeEvent from normalized "card.change" data.

    Raises:
        ValueError / pydantic.ValidationError for malformed data
    """
    change = ChangeType(data["change"])
    record = data.get("record")
    old_record = data.get("old_record")

    card = None
    lock_holder = None
    lock_acquired_at = None
    if change != ChangeType.DELETE:
        if not isinstance(record, dict):
            raise ValueError(f"{change.value} change without a record")
        card = Card.from_row(record)
        lock_holder = record.get("editing_by")
        lock_acquired_at = record.get("editing_at")

    project_id = None
    if card is not None:
        project_id = card.project_id
    elif isinstance(old_record, dict) and old_record.get("project_id"):
        project_id = str(old_record["project_id"])

    return CardChangeEvent(
        type=change,
        record=card,
        old_record=old_record if isinstance(old_record, dict) else None,
        project_id=project_id,
        commit_timestamp=data.get("commit_timestamp"),
        lock_holder=lock_holder,
        lock_acquired_at=lock_acquired_at,
        seq=seq,
    )
