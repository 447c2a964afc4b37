"""
DragController - pointer drags to logical moves

On drag end the pixel delta is scaled into logical units using the
container size measured for that gesture (never a cached scale), added to
the card's position, clamped, and handed to the optimistic controller as a
move.

Drags of a card locked by another participant are refused with an explicit
DragOutcome.REFUSED_LOCKED.
"""

import logging
from dataclasses import dataclass

from config import config
from models import (
    ContainerSize,
    DragOutcome,
    LogicalPosition,
    MutationResult,
    PixelPosition,
)

from .card_store import CardStore
from .coordinates import CoordinateSystem
from .lock_manager import LockManager
from .optimistic import OptimisticUpdateController

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DragResult:
    """Outcome of a drag gesture."""

    outcome: DragOutcome
    card_id: str
    position: LogicalPosition | None = None
    logical_delta: tuple[float, float] | None = None
    mutation: MutationResult | None = None
    lock_holder: str | None = None

    @property
    def moved(self) -> bool:
        return self.outcome == DragOutcome.MOVED


class DragController:
    """
    Translates drag gestures into move mutations

    Args:
        store: CardStore holding the dragged cards
        controller: Optimistic controller that performs the move
        locks: Lock table consulted before a drag starts and ends
        participant_id: Local participant
        coords: Logical canvas geometry (defaults to Config.MATRIX)
    """

    def __init__(
        self,
        store: CardStore,
        controller: OptimisticUpdateController,
        locks: LockManager,
        participant_id: str,
        coords: CoordinateSystem | None = None,
    ):
        self.store = store
        self.controller = controller
        self.locks = locks
        self.participant_id = participant_id
        self.coords = coords or CoordinateSystem()
        self.epsilon = config.MATRIX["drag_epsilon_px"]
        self._dragging: set[str] = set()

    def is_dragging(self, card_id: str) -> bool:
        return card_id in self._dragging

    def _refusal(self, card_id: str) -> DragResult | None:
        if self.store.get(card_id) is None:
            return DragResult(DragOutcome.NOT_FOUND, card_id)
        if self.locks.is_locked_by_other(card_id, self.participant_id):
            lock = self.locks.get(card_id)
            holder = lock.holder_id if lock else None
            logger.info(f"Drag of {card_id} refused: locked by {holder}")
            return DragResult(DragOutcome.REFUSED_LOCKED, card_id, lock_holder=holder)
        return None

    def begin_drag(self, card_id: str) -> DragResult:
        """Gate at the UI-intent boundary: may this participant drag the card?"""
        refusal = self._refusal(card_id)
        if refusal is not None:
            return refusal
        self._dragging.add(card_id)
        return DragResult(DragOutcome.STARTED, card_id, position=self.store.get(card_id).position)

    def cancel_drag(self, card_id: str) -> None:
        self._dragging.discard(card_id)

    def cancel_all(self) -> None:
        self._dragging.clear()

    def logical_delta(
        self, pixel_delta: PixelPosition, container: ContainerSize
    ) -> tuple[float, float]:
        """Scale a pixel delta by logical canvas / measured container, per axis."""
        scale_x, scale_y = self.coords.scale_for(container.width, container.height)
        return (pixel_delta.x * scale_x, pixel_delta.y * scale_y)

    async def on_drag_end(
        self, card_id: str, pixel_delta: PixelPosition, container: ContainerSize
    ) -> DragResult:
        """
        Finish a drag: scale, clamp and persist the new position.

        Args:
            card_id: Dragged card
            pixel_delta: Total pointer movement in rendered pixels
            container: Container size measured at drag end
        """
        try:
            refusal = self._refusal(card_id)
            if refusal is not None:
                return refusal

            if abs(pixel_delta.x) < self.epsilon and abs(pixel_delta.y) < self.epsilon:
                return DragResult(DragOutcome.NO_OP, card_id, position=self.store.get(card_id).position)

            card = self.store.get(card_id)
            dx, dy = self.logical_delta(pixel_delta, container)
            target = self.coords.clamp(card.position.offset(dx, dy))
            if target == card.position:
                return DragResult(DragOutcome.NO_OP, card_id, position=card.position)

            logger.debug(
                f"Drag {card_id}: {pixel_delta.x:+.1f},{pixel_delta.y:+.1f}px in "
                f"{container.width:.0f}x{container.height:.0f} -> {target.x:.2f},{target.y:.2f}"
            )
            mutation = await self.controller.move_card(card_id, target)
            outcome = DragOutcome.MOVED if mutation.ok else DragOutcome.FAILED
            return DragResult(
                outcome,
                card_id,
                position=target,
                logical_delta=(dx, dy),
                mutation=mutation,
            )
        finally:
            self._dragging.discard(card_id)
