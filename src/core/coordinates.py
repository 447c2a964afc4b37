"""
Coordinate system for the matrix canvas

Pure functions converting between pixel, normalized (0-1) and logical card
coordinates, plus the quadrant rule.

Quadrant classification always happens in normalized space with a 50%
threshold per axis. A position exactly on the threshold belongs to the right
(x) / bottom (y) side, so (0.5, 0.5) is bottom-right.

None of these functions raise for finite input; out-of-range values are
clamped.
"""

import math
import random
from dataclasses import dataclass, field
from typing import Any

from config import config
from models import (
    CanvasBounds,
    LogicalPosition,
    NormalizedPosition,
    Padding,
    PixelPosition,
    Quadrant,
)


@dataclass(frozen=True)
class MatrixDimensions:
    """
    Rendered matrix container

    Attributes:
        width: Container width in pixels
        height: Container height in pixels
        padding: Padding box; the usable area is what remains inside it
    """

    width: float
    height: float
    padding: Padding = field(default_factory=Padding)

    @property
    def usable_width(self) -> float:
        return self.width - self.padding.left - self.padding.right

    @property
    def usable_height(self) -> float:
        return self.height - self.padding.top - self.padding.bottom


DEFAULT_MATRIX_DIMENSIONS = MatrixDimensions(
    width=1200, height=1000, padding=Padding(top=60, right=60, bottom=80, left=60)
)
MINIMUM_MATRIX_DIMENSIONS = MatrixDimensions(
    width=600, height=500, padding=Padding(top=40, right=40, bottom=60, left=40)
)
MAXIMUM_MATRIX_DIMENSIONS = MatrixDimensions(
    width=1800, height=1500, padding=Padding(top=80, right=80, bottom=100, left=80)
)

QUADRANT_THRESHOLD = 0.5

_QUADRANT_CENTERS = {
    Quadrant.TOP_LEFT: NormalizedPosition(0.25, 0.25),
    Quadrant.TOP_RIGHT: NormalizedPosition(0.75, 0.25),
    Quadrant.BOTTOM_LEFT: NormalizedPosition(0.25, 0.75),
    Quadrant.BOTTOM_RIGHT: NormalizedPosition(0.75, 0.75),
}


def _clamp_unit(value: float) -> float:
    if math.isnan(value):
        return 0.5
    return min(1.0, max(0.0, value))


def _safe_ratio(offset: float, usable: float) -> float:
    # Degenerate container (padding swallows everything): treat as centered
    if usable <= 0:
        return 0.5
    return offset / usable


# ========== Pixel <-> Normalized ==========


def to_normalized(
    pixel: PixelPosition, dims: MatrixDimensions = DEFAULT_MATRIX_DIMENSIONS
) -> NormalizedPosition:
    """
    Convert a rendered pixel position to normalized coordinates.

    Computes (pixel - padding) / usable size per axis, clamped to [0, 1].
    """
    nx = _safe_ratio(pixel.x - dims.padding.left, dims.usable_width)
    ny = _safe_ratio(pixel.y - dims.padding.top, dims.usable_height)
    return NormalizedPosition(_clamp_unit(nx), _clamp_unit(ny))


def to_pixel(
    normalized: NormalizedPosition, dims: MatrixDimensions = DEFAULT_MATRIX_DIMENSIONS
) -> PixelPosition:
    """Inverse of to_normalized."""
    n = constrain_normalized(normalized)
    return PixelPosition(
        dims.padding.left + n.x * dims.usable_width,
        dims.padding.top + n.y * dims.usable_height,
    )


def apply_pixel_delta(
    normalized: NormalizedPosition,
    delta: PixelPosition,
    dims: MatrixDimensions = DEFAULT_MATRIX_DIMENSIONS,
) -> NormalizedPosition:
    """Move a normalized position by a pixel delta measured in `dims`."""
    dx = delta.x / dims.usable_width if dims.usable_width > 0 else 0.0
    dy = delta.y / dims.usable_height if dims.usable_height > 0 else 0.0
    return constrain_normalized(NormalizedPosition(normalized.x + dx, normalized.y + dy))


# ========== Quadrants ==========


def classify_quadrant(normalized: NormalizedPosition) -> Quadrant:
    """
    Classify a normalized position into a quadrant.

    x >= 0.5 is right, y >= 0.5 is bottom.
    """
    n = constrain_normalized(normalized)
    right = n.x >= QUADRANT_THRESHOLD
    bottom = n.y >= QUADRANT_THRESHOLD
    if bottom:
        return Quadrant.BOTTOM_RIGHT if right else Quadrant.BOTTOM_LEFT
    return Quadrant.TOP_RIGHT if right else Quadrant.TOP_LEFT


def quadrant_center(quadrant: Quadrant) -> NormalizedPosition:
    return _QUADRANT_CENTERS[Quadrant(quadrant)]


def random_position_in_quadrant(
    quadrant: Quadrant, margin: float = 0.1, rng: random.Random | None = None
) -> NormalizedPosition:
    """
    Random normalized position inside a quadrant.

    `margin` is the fraction of the quadrant's extent kept clear on every side.
    """
    rng = rng or random.Random()
    margin = min(0.49, max(0.0, margin))
    center = quadrant_center(quadrant)
    half = QUADRANT_THRESHOLD / 2
    lo = half * 2 * margin - half
    hi = half - half * 2 * margin
    # Half-open on the threshold side so the result never lands on 0.5
    x = center.x + rng.uniform(lo, hi)
    y = center.y + rng.uniform(lo, hi)
    if center.x < QUADRANT_THRESHOLD:
        x = min(x, math.nextafter(QUADRANT_THRESHOLD, 0.0))
    if center.y < QUADRANT_THRESHOLD:
        y = min(y, math.nextafter(QUADRANT_THRESHOLD, 0.0))
    return constrain_normalized(NormalizedPosition(x, y))


# ========== Normalized helpers ==========


def is_valid_normalized(position: NormalizedPosition) -> bool:
    return 0.0 <= position.x <= 1.0 and 0.0 <= position.y <= 1.0


def constrain_normalized(position: NormalizedPosition) -> NormalizedPosition:
    if is_valid_normalized(position):
        return position
    return NormalizedPosition(_clamp_unit(position.x), _clamp_unit(position.y))


# ========== Logical canvas ==========


def default_bounds() -> CanvasBounds:
    """Logical bounds from config: canvas plus overflow allowance on each edge."""
    overflow = config.MATRIX["overflow"]
    return CanvasBounds(
        min_x=-overflow,
        max_x=config.MATRIX["canvas_width"] + overflow,
        min_y=-overflow,
        max_y=config.MATRIX["canvas_height"] + overflow,
    )


def clamp(position: LogicalPosition, bounds: CanvasBounds | None = None) -> LogicalPosition:
    """
    Constrain logical coordinates to the valid range.

    Idempotent: clamp(clamp(p, b), b) == clamp(p, b). NaN collapses to the
    bounds' lower edge.
    """
    b = bounds or default_bounds()
    x = position.x if not math.isnan(position.x) else b.min_x
    y = position.y if not math.isnan(position.y) else b.min_y
    cx = min(b.max_x, max(b.min_x, x))
    cy = min(b.max_y, max(b.min_y, y))
    if cx == position.x and cy == position.y:
        return position
    return LogicalPosition(cx, cy)


def logical_to_normalized(
    position: LogicalPosition,
    canvas_width: float | None = None,
    canvas_height: float | None = None,
) -> NormalizedPosition:
    """Logical canvas coordinates to normalized (clamped to [0, 1])."""
    width = canvas_width or config.MATRIX["canvas_width"]
    height = canvas_height or config.MATRIX["canvas_height"]
    return NormalizedPosition(_clamp_unit(position.x / width), _clamp_unit(position.y / height))


def normalized_to_logical(
    normalized: NormalizedPosition,
    canvas_width: float | None = None,
    canvas_height: float | None = None,
) -> LogicalPosition:
    width = canvas_width or config.MATRIX["canvas_width"]
    height = canvas_height or config.MATRIX["canvas_height"]
    n = constrain_normalized(normalized)
    return LogicalPosition(n.x * width, n.y * height)


def quadrant_of(position: LogicalPosition) -> Quadrant:
    """Quadrant of a stored card position (via normalized space)."""
    return classify_quadrant(logical_to_normalized(position))


def logical_to_percent(position: LogicalPosition) -> tuple[float, float]:
    """
    Render mapping used by the canvas: percentage of the container.

    The canvas reserves a margin on each side, so x maps as
    (x + margin) / (canvas + 2 * margin) * 100.
    """
    margin = config.MATRIX["render_margin"]
    span_x = config.MATRIX["canvas_width"] + 2 * margin
    span_y = config.MATRIX["canvas_height"] + 2 * margin
    return (
        (position.x + margin) / span_x * 100.0,
        (position.y + margin) / span_y * 100.0,
    )


def legacy_to_normalized(
    row: dict[str, Any], dims: MatrixDimensions = DEFAULT_MATRIX_DIMENSIONS
) -> NormalizedPosition:
    """
    Normalized position for a stored row of any vintage.

    Prefers a `matrix_position` {x, y} column; otherwise treats x/y as legacy
    pixel coordinates in `dims`. Missing data lands at the center.
    """
    stored = row.get("matrix_position")
    if isinstance(stored, dict) and _is_number(stored.get("x")) and _is_number(stored.get("y")):
        return constrain_normalized(NormalizedPosition(float(stored["x"]), float(stored["y"])))

    x, y = row.get("x"), row.get("y")
    if _is_number(x) and _is_number(y):
        return to_normalized(PixelPosition(float(x), float(y)), dims)

    return NormalizedPosition(0.5, 0.5)


def _is_number(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


class CoordinateSystem:
    """
    Logical canvas geometry bound to one configuration

    Thin stateful wrapper over the module functions so that callers which
    need a non-default canvas (tests, alternative boards) don't thread
    width/height/bounds through every call.
    """

    def __init__(
        self,
        canvas_width: float | None = None,
        canvas_height: float | None = None,
        overflow: float | None = None,
    ):
        self.canvas_width = float(canvas_width or config.MATRIX["canvas_width"])
        self.canvas_height = float(canvas_height or config.MATRIX["canvas_height"])
        overflow = config.MATRIX["overflow"] if overflow is None else overflow
        self.bounds = CanvasBounds(
            min_x=-overflow,
            max_x=self.canvas_width + overflow,
            min_y=-overflow,
            max_y=self.canvas_height + overflow,
        )

    def clamp(self, position: LogicalPosition) -> LogicalPosition:
        return clamp(position, self.bounds)

    def normalize(self, position: LogicalPosition) -> NormalizedPosition:
        return logical_to_normalized(position, self.canvas_width, self.canvas_height)

    def denormalize(self, normalized: NormalizedPosition) -> LogicalPosition:
        return normalized_to_logical(normalized, self.canvas_width, self.canvas_height)

    def quadrant(self, position: LogicalPosition) -> Quadrant:
        return classify_quadrant(self.normalize(position))

    def scale_for(self, container_width: float, container_height: float) -> tuple[float, float]:
        """Logical units per rendered pixel on each axis."""
        return (self.canvas_width / container_width, self.canvas_height / container_height)
