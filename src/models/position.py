"""
Position value types

Three coordinate spaces are in play:
- logical: stored card coordinates on the fixed canvas (0-520 by default)
- normalized: 0-1 on each axis, used for quadrant classification
- pixel: rendered position inside a measured container
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class LogicalPosition:
    """Stored card coordinates on the logical canvas"""

    x: float
    y: float

    def offset(self, dx: float, dy: float) -> "LogicalPosition":
        return LogicalPosition(self.x + dx, self.y + dy)

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class NormalizedPosition:
    """Position as a fraction of the usable area (0-1 per axis)"""

    x: float
    y: float


@dataclass(frozen=True)
class PixelPosition:
    """Rendered pixel position, also used for pointer deltas"""

    x: float
    y: float


@dataclass(frozen=True)
class Padding:
    """Padding box around the usable matrix area"""

    top: float = 0.0
    right: float = 0.0
    bottom: float = 0.0
    left: float = 0.0


@dataclass(frozen=True)
class CanvasBounds:
    """Valid range for logical coordinates (canvas plus overflow allowance)"""

    min_x: float
    max_x: float
    min_y: float
    max_y: float

    def __post_init__(self):
        if self.min_x > self.max_x or self.min_y > self.max_y:
            raise ValueError(f"empty bounds: {self}")

    def contains(self, position: LogicalPosition) -> bool:
        return (
            self.min_x <= position.x <= self.max_x
            and self.min_y <= position.y <= self.max_y
        )


@dataclass(frozen=True)
class ContainerSize:
    """
    Measured size of the rendered matrix container

    Attributes:
        width: Rendered width in pixels
        height: Rendered height in pixels
    """

    width: float
    height: float

    def __post_init__(self):
        if not self.width > 0:
            raise ValueError(f"container width must be positive, got {self.width}")
        if not self.height > 0:
            raise ValueError(f"container height must be positive, got {self.height}")
