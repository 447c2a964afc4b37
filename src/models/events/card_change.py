"""
Card Change Event Schema

One row-level change delivered by the change feed. The feed subscription is
table-wide, so every event carries the project it belongs to and consumers
filter client-side.

Wire shape (after normalization):
    {
        "type": "update",
        "table": "cards",
        "record": {...flat cards row...},
        "old_record": {"id": "..."},
        "commit_timestamp": "2025-10-01T12:05:00.123+00:00"
    }
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from ..card import Card
from ..enums import ChangeType


class CardChangeEvent(BaseModel):
    """Normalized insert/update/delete for a single card."""

    type: ChangeType = Field(..., description="insert | update | delete")
    record: Card | None = Field(None, description="New row for insert/update")
    old_record: dict[str, Any] | None = Field(None, description="Previous row (delete)")
    project_id: str | None = Field(None, description="Owning project, if known")
    commit_timestamp: datetime | None = Field(None, description="Server commit time")

    # Lock columns mirrored from the row
    lock_holder: str | None = Field(None)
    lock_acquired_at: datetime | None = Field(None)

    # Ingestion metadata
    seq: int | None = Field(None)

    @model_validator(mode="after")
    def check_shape(self):
        if self.type in (ChangeType.INSERT, ChangeType.UPDATE) and self.record is None:
            raise ValueError(f"{self.type.value} event requires a record")
        if self.type == ChangeType.DELETE and not self.entity_id:
            raise ValueError("delete event requires old_record.id")
        if self.project_id is None and self.record is not None:
            self.project_id = self.record.project_id
        return self

    @property
    def entity_id(self) -> str | None:
        if self.record is not None:
            return self.record.id
        if self.old_record:
            value = self.old_record.get("id")
            return str(value) if value is not None else None
        return None

    @property
    def is_delete(self) -> bool:
        return self.type == ChangeType.DELETE

    @property
    def commit_epoch(self) -> float | None:
        """commit_timestamp as epoch seconds, for comparison with issue times."""
        return self.commit_timestamp.timestamp() if self.commit_timestamp else None
