"""
Data models for the priority matrix sync engine
"""

from .card import LOCK_COLUMNS, Card
from .enums import (
    QUADRANT_LABELS,
    ChangeType,
    DragOutcome,
    MutationKind,
    MutationStatus,
    Priority,
    Quadrant,
)
from .events import CardChangeEvent
from .lock import Lock, LockResult, LockStatus, utc_now
from .mutation import MutationDescriptor, MutationResult, PendingMutation
from .position import (
    CanvasBounds,
    ContainerSize,
    LogicalPosition,
    NormalizedPosition,
    Padding,
    PixelPosition,
)

__all__ = [
    # Entities
    "Card",
    "LOCK_COLUMNS",
    "Lock",
    "LockResult",
    "LockStatus",
    "utc_now",
    # Positions
    "LogicalPosition",
    "NormalizedPosition",
    "PixelPosition",
    "Padding",
    "CanvasBounds",
    "ContainerSize",
    # Enums
    "Quadrant",
    "QUADRANT_LABELS",
    "MutationKind",
    "MutationStatus",
    "ChangeType",
    "DragOutcome",
    "Priority",
    # Mutations
    "PendingMutation",
    "MutationDescriptor",
    "MutationResult",
    # Events
    "CardChangeEvent",
]
