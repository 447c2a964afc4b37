"""Core module - positioning math, local state and the optimistic sync protocol"""

from . import validators
from .card_store import CardStore, StoreChange, StoreChangeKind
from .collision import (
    CardFootprint,
    PlacementResult,
    find_non_conflicting_position,
    footprint_for,
    suggest_position,
)
from .coordinates import (
    DEFAULT_MATRIX_DIMENSIONS,
    MAXIMUM_MATRIX_DIMENSIONS,
    MINIMUM_MATRIX_DIMENSIONS,
    CoordinateSystem,
    MatrixDimensions,
    classify_quadrant,
    clamp,
    logical_to_normalized,
    logical_to_percent,
    quadrant_of,
    to_normalized,
    to_pixel,
)
from .drag_controller import DragController, DragResult
from .lock_manager import LockManager
from .optimistic import OptimisticUpdateController, PersistTimeout
from .validators import CardLockedError, ValidationError
from .z_order import InteractionState, compute_stack_order

__all__ = [
    # Coordinates
    "CoordinateSystem",
    "MatrixDimensions",
    "DEFAULT_MATRIX_DIMENSIONS",
    "MINIMUM_MATRIX_DIMENSIONS",
    "MAXIMUM_MATRIX_DIMENSIONS",
    "to_normalized",
    "to_pixel",
    "classify_quadrant",
    "clamp",
    "logical_to_normalized",
    "logical_to_percent",
    "quadrant_of",
    # Stacking
    "InteractionState",
    "compute_stack_order",
    # State
    "CardStore",
    "StoreChange",
    "StoreChangeKind",
    "LockManager",
    # Sync
    "OptimisticUpdateController",
    "PersistTimeout",
    "DragController",
    "DragResult",
    # Placement
    "CardFootprint",
    "PlacementResult",
    "footprint_for",
    "find_non_conflicting_position",
    "suggest_position",
    # Validation
    "ValidationError",
    "CardLockedError",
    "validators",
]
