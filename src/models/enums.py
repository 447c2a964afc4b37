"""
Enumerations for matrix quadrants, mutations and feed events
"""

from enum import Enum


class Quadrant(str, Enum):
    """Matrix quadrants, keyed by screen corner"""

    TOP_LEFT = "top-left"
    TOP_RIGHT = "top-right"
    BOTTOM_LEFT = "bottom-left"
    BOTTOM_RIGHT = "bottom-right"

    @property
    def label(self) -> str:
        """Product name of the quadrant (value/effort matrix)."""
        return QUADRANT_LABELS[self]


QUADRANT_LABELS = {
    Quadrant.TOP_LEFT: "quick-wins",
    Quadrant.TOP_RIGHT: "strategic",
    Quadrant.BOTTOM_LEFT: "reconsider",
    Quadrant.BOTTOM_RIGHT: "avoid",
}


class MutationKind(str, Enum):
    """Kinds of optimistic mutation"""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    MOVE = "move"

    @property
    def idempotent(self) -> bool:
        """Safe to resend after a transient failure."""
        return self is not MutationKind.CREATE


class MutationStatus(str, Enum):
    """Outcome of an optimistic mutation"""

    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"
    SUPERSEDED = "superseded"  # a newer mutation for the same card decided the state
    ABANDONED = "abandoned"  # project switched while in flight


class ChangeType(str, Enum):
    """Change-feed event types"""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class DragOutcome(str, Enum):
    """Result of a drag gesture"""

    STARTED = "started"
    MOVED = "moved"
    NO_OP = "no_op"
    REFUSED_LOCKED = "refused_locked"
    NOT_FOUND = "not_found"
    FAILED = "failed"


class Priority(str, Enum):
    """Card priority levels (payload only, never read by the engine)"""

    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    STRATEGIC = "strategic"
    INNOVATION = "innovation"
