"""
Card entity - the positionable unit on the matrix

Wire format is the flat `cards` row used by the durable store and the change
feed:

    {
        "id": "c0ffee...",
        "project_id": "p-1",
        "x": 130.0,
        "y": 130.0,
        "is_collapsed": false,
        "content": "Ship onboarding checklist",
        "priority": "high",
        "created_by": "u-42",
        "created_at": "2025-10-01T12:00:00+00:00",
        "updated_at": "2025-10-01T12:05:00+00:00",
        "version": 3
    }

Columns the engine does not know about are carried in `attributes` untouched.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .position import LogicalPosition

# Row columns mapped onto explicit Card fields (everything else -> attributes)
_KNOWN_COLUMNS = frozenset(
    {
        "id",
        "project_id",
        "x",
        "y",
        "is_collapsed",
        "collapsed",
        "content",
        "priority",
        "created_by",
        "owner_id",
        "created_at",
        "updated_at",
        "version",
    }
)

# Lock columns live on the row but belong to LockManager, not the card
LOCK_COLUMNS = frozenset({"editing_by", "editing_at"})


class Card(BaseModel):
    """
    Immutable card snapshot.

    Updates produce a new instance (`model_copy`), so a snapshot captured for
    rollback can never be mutated by later edits.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    project_id: str = Field(..., min_length=1)
    position: LogicalPosition
    collapsed: bool = False

    # Payload - opaque to the positioning engine
    content: str = ""
    priority: str = "moderate"
    owner_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    # Optimistic concurrency
    version: int = 0

    @field_validator("position", mode="before")
    @classmethod
    def coerce_position(cls, v):
        """Accept {"x": .., "y": ..} dicts and (x, y) pairs."""
        if isinstance(v, dict):
            return LogicalPosition(float(v["x"]), float(v["y"]))
        if isinstance(v, (tuple, list)) and len(v) == 2:
            return LogicalPosition(float(v[0]), float(v[1]))
        return v

    @property
    def x(self) -> float:
        return self.position.x

    @property
    def y(self) -> float:
        return self.position.y

    def moved_to(self, position: LogicalPosition) -> "Card":
        """Copy of this card at a new logical position."""
        return self.model_copy(update={"position": position})

    def with_changes(self, partial: dict[str, Any]) -> "Card":
        """
        Apply a partial row/field update and return the new snapshot.

        Accepts both wire column names (x, y, is_collapsed, created_by) and
        field names (position, collapsed, owner_id).
        """
        update: dict[str, Any] = {}
        x = partial.get("x", self.position.x)
        y = partial.get("y", self.position.y)
        if "position" in partial:
            pos = partial["position"]
            if isinstance(pos, LogicalPosition):
                x, y = pos.x, pos.y
            else:
                x, y = pos["x"], pos["y"]
        if (x, y) != (self.position.x, self.position.y):
            update["position"] = LogicalPosition(float(x), float(y))

        if "is_collapsed" in partial:
            update["collapsed"] = bool(partial["is_collapsed"])
        if "collapsed" in partial:
            update["collapsed"] = bool(partial["collapsed"])
        for key in ("content", "priority", "version", "updated_at"):
            if key in partial:
                update[key] = partial[key]
        if "created_by" in partial:
            update["owner_id"] = partial["created_by"]
        if "owner_id" in partial:
            update["owner_id"] = partial["owner_id"]

        extra = {
            k: v
            for k, v in partial.items()
            if k not in _KNOWN_COLUMNS and k not in LOCK_COLUMNS and k not in ("position", "attributes")
        }
        if "attributes" in partial or extra:
            attributes = dict(self.attributes)
            attributes.update(partial.get("attributes") or {})
            attributes.update(extra)
            update["attributes"] = attributes

        if not update:
            return self
        # Round-trip through validation so coercion rules still apply
        return Card.model_validate({**self.model_dump(), **update})

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Card":
        """Create a Card from a flat `cards` row."""
        collapsed = row.get("is_collapsed", row.get("collapsed", False))
        attributes = {
            k: v for k, v in row.items() if k not in _KNOWN_COLUMNS and k not in LOCK_COLUMNS
        }
        return cls(
            id=str(row["id"]),
            project_id=str(row["project_id"]),
            position=LogicalPosition(float(row.get("x", 0.0)), float(row.get("y", 0.0))),
            collapsed=bool(collapsed),
            content=row.get("content") or "",
            priority=row.get("priority") or "moderate",
            owner_id=row.get("created_by", row.get("owner_id")),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            version=int(row.get("version") or 0),
            attributes=attributes,
        )

    def to_row(self) -> dict[str, Any]:
        """Serialize to a flat `cards` row for JSON transmission."""
        row = dict(self.attributes)
        row.update(
            {
                "id": self.id,
                "project_id": self.project_id,
                "x": self.position.x,
                "y": self.position.y,
                "is_collapsed": self.collapsed,
                "content": self.content,
                "priority": self.priority,
                "created_by": self.owner_id,
                "created_at": self.created_at.isoformat() if self.created_at else None,
                "updated_at": self.updated_at.isoformat() if self.updated_at else None,
                "version": self.version,
            }
        )
        return row
