"""
Collision-aware card placement

Card footprints live in rendered pixel space (the collapsed/expanded state
changes the footprint only, never the stored position). Placement searches
outward along a spiral for a spot that keeps the minimum spacing to every
other card, then maps the result back to logical coordinates.
"""

import logging
import math
from dataclasses import dataclass

from config import config
from models import Card, LogicalPosition, PixelPosition

from .coordinates import (
    DEFAULT_MATRIX_DIMENSIONS,
    MatrixDimensions,
    logical_to_normalized,
    normalized_to_logical,
    to_normalized,
    to_pixel,
)

logger = logging.getLogger(__name__)

# Extra inset from the usable area so a card never touches the axis labels
BOUNDARY_PADDING = 20.0


@dataclass(frozen=True)
class CardFootprint:
    width: float
    height: float


@dataclass(frozen=True)
class CardBounds:
    left: float
    top: float
    right: float
    bottom: float

    @property
    def center(self) -> PixelPosition:
        return PixelPosition((self.left + self.right) / 2, (self.top + self.bottom) / 2)


@dataclass(frozen=True)
class PlacedCard:
    """A card's rendered footprint at a pixel position."""

    id: str
    position: PixelPosition
    footprint: CardFootprint


@dataclass(frozen=True)
class PlacementResult:
    position: LogicalPosition
    pixel: PixelPosition
    had_conflicts: bool


def footprint_for(collapsed: bool) -> CardFootprint:
    cards = config.CARDS
    if collapsed:
        return CardFootprint(cards["collapsed_width"], cards["collapsed_height"])
    return CardFootprint(cards["expanded_width"], cards["expanded_height"])


def card_bounds(position: PixelPosition, footprint: CardFootprint) -> CardBounds:
    """Bounds of a card centered on `position`."""
    half_w = footprint.width / 2
    half_h = footprint.height / 2
    return CardBounds(
        left=position.x - half_w,
        top=position.y - half_h,
        right=position.x + half_w,
        bottom=position.y + half_h,
    )


def cards_overlap(a: CardBounds, b: CardBounds) -> bool:
    return not (a.right < b.left or a.left > b.right or a.bottom < b.top or a.top > b.bottom)


def cards_conflict(a: CardBounds, b: CardBounds, min_spacing: float | None = None) -> bool:
    """True when the cards overlap or sit closer than the minimum spacing."""
    if min_spacing is None:
        min_spacing = config.CARDS["min_spacing"]
    spacing = min_spacing / 2
    return not (
        a.right + spacing < b.left
        or a.left - spacing > b.right
        or a.bottom + spacing < b.top
        or a.top - spacing > b.bottom
    )


def constrain_to_bounds(
    position: PixelPosition, footprint: CardFootprint, dims: MatrixDimensions
) -> PixelPosition:
    """Keep the whole footprint inside the usable area (minus boundary padding)."""
    half_w = footprint.width / 2
    half_h = footprint.height / 2
    min_x = dims.padding.left + BOUNDARY_PADDING + half_w
    min_y = dims.padding.top + BOUNDARY_PADDING + half_h
    max_x = dims.width - dims.padding.right - BOUNDARY_PADDING - half_w
    max_y = dims.height - dims.padding.bottom - BOUNDARY_PADDING - half_h
    # Container smaller than the card: center it
    if min_x > max_x:
        min_x = max_x = dims.padding.left + dims.usable_width / 2
    if min_y > max_y:
        min_y = max_y = dims.padding.top + dims.usable_height / 2
    return PixelPosition(max(min_x, min(max_x, position.x)), max(min_y, min(max_y, position.y)))


def find_conflicting_cards(
    target: PixelPosition,
    footprint: CardFootprint,
    existing: list[PlacedCard],
    exclude_id: str | None = None,
) -> list[str]:
    target_bounds = card_bounds(target, footprint)
    return [
        card.id
        for card in existing
        if card.id != exclude_id
        and cards_conflict(target_bounds, card_bounds(card.position, card.footprint))
    ]


def find_non_conflicting_position(
    target: PixelPosition,
    footprint: CardFootprint,
    existing: list[PlacedCard],
    dims: MatrixDimensions = DEFAULT_MATRIX_DIMENSIONS,
    exclude_id: str | None = None,
    max_attempts: int | None = None,
) -> PixelPosition:
    """
    Nearest conflict-free position along an outward spiral.

    Falls back to the (constrained) target when every attempt conflicts.
    """
    if max_attempts is None:
        max_attempts = config.CARDS["placement_attempts"]

    position = constrain_to_bounds(target, footprint, dims)
    if not find_conflicting_cards(position, footprint, existing, exclude_id):
        return position

    radius = max(footprint.width, footprint.height) + config.CARDS["min_spacing"]
    for attempt in range(max_attempts):
        angle = 2 * math.pi * attempt / max_attempts
        distance = radius * (1 + attempt / max_attempts)
        candidate = constrain_to_bounds(
            PixelPosition(
                target.x + math.cos(angle) * distance,
                target.y + math.sin(angle) * distance,
            ),
            footprint,
            dims,
        )
        if not find_conflicting_cards(candidate, footprint, existing, exclude_id):
            return candidate

    logger.debug(f"No conflict-free spot after {max_attempts} attempts, keeping target")
    return position


def suggest_position(
    target: LogicalPosition,
    cards: list[Card],
    collapsed: bool = False,
    dims: MatrixDimensions = DEFAULT_MATRIX_DIMENSIONS,
    exclude_id: str | None = None,
) -> PlacementResult:
    """
    Conflict-free logical position near `target` given the existing cards.

    Footprints are evaluated in `dims`, so the result depends on the
    reference container; the default dimensions are used at create time.
    """
    placed = [
        PlacedCard(
            id=card.id,
            position=to_pixel(logical_to_normalized(card.position), dims),
            footprint=footprint_for(card.collapsed),
        )
        for card in cards
    ]
    target_pixel = to_pixel(logical_to_normalized(target), dims)
    final_pixel = find_non_conflicting_position(
        target_pixel, footprint_for(collapsed), placed, dims, exclude_id
    )
    had_conflicts = (
        abs(final_pixel.x - target_pixel.x) > 1 or abs(final_pixel.y - target_pixel.y) > 1
    )
    if not had_conflicts:
        return PlacementResult(position=target, pixel=target_pixel, had_conflicts=False)

    position = normalized_to_logical(to_normalized(final_pixel, dims))
    return PlacementResult(position=position, pixel=final_pixel, had_conflicts=True)
