"""
MatrixEngine - one participant's view of one priority matrix

Explicit context object that owns the working set for the active project:
CardStore, LockManager, OptimisticUpdateController, DragController and the
ChangeFeedMerger, plus an EventBus for lifecycle notifications. Several
engines can run side by side (one per participant in tests); nothing here is
module-global.

Usage:
    engine = MatrixEngine("alice", durable, feed)
    await engine.open_project("project-1")
    result = await engine.create_card("Ship beta", quadrant=Quadrant.TOP_LEFT)
    view = engine.project_card(result.card.id)
    await engine.close()
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from core.card_store import CardStore, StoreChange
from core.collision import suggest_position
from core.coordinates import (
    DEFAULT_MATRIX_DIMENSIONS,
    CoordinateSystem,
    MatrixDimensions,
    logical_to_percent,
    quadrant_center,
    to_pixel,
)
from core.drag_controller import DragController, DragResult
from core.lock_manager import LockManager
from core.optimistic import OptimisticUpdateController
from core.validators import CardLockedError, ValidationError
from core.z_order import InteractionState, compute_stack_order
from feed.subscriber import FeedSource
from models import (
    Card,
    ContainerSize,
    DragOutcome,
    LockResult,
    LockStatus,
    LogicalPosition,
    MutationDescriptor,
    MutationKind,
    MutationResult,
    MutationStatus,
    PixelPosition,
    Priority,
    Quadrant,
)
from sources.durable_store import DurableStore, StoreError

from services.change_feed_merger import ChangeFeedMerger
from services.event_bus import EventBus, Events

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CardView:
    """Render-ready projection of a card for one container size."""

    card_id: str
    pixel: PixelPosition
    percent: tuple[float, float]
    quadrant: Quadrant
    z: int
    lock: LockStatus

    def to_dict(self) -> dict:
        return {
            "card_id": self.card_id,
            "pixel": {"x": self.pixel.x, "y": self.pixel.y},
            "percent": {"x": self.percent[0], "y": self.percent[1]},
            "quadrant": self.quadrant.value,
            "z": self.z,
            "locked": self.lock.locked,
            "locked_by_self": self.lock.locked_by_self,
            "remaining_ttl_seconds": self.lock.remaining_ttl_seconds,
        }


class MatrixEngine:
    """
    Positioning and sync engine for one participant

    Args:
        participant_id: Local participant (lock holder id, card creator)
        durable: DurableStore for persistence and project loads
        feed: Change feed source (ChangeFeedClient or LocalChangeFeed)
        coords: Logical canvas geometry
        event_bus: Bus for notifications (a private one is created if omitted)
        lock_ttl: Lock TTL override in seconds
        clock: Wall clock for lock expiry
        publish_locks: Write lock columns (editing_by/editing_at) to the
            durable store so other clients see them
        persist_timeout / retry_attempts / retry_backoff: Controller overrides
    """

    def __init__(
        self,
        participant_id: str,
        durable: DurableStore,
        feed: FeedSource,
        coords: CoordinateSystem | None = None,
        event_bus: EventBus | None = None,
        lock_ttl: float | None = None,
        clock: Callable[[], datetime] | None = None,
        publish_locks: bool = False,
        persist_timeout: float | None = None,
        retry_attempts: int | None = None,
        retry_backoff: float | None = None,
    ):
        if not participant_id:
            raise ValueError("participant_id is required")

        self.participant_id = participant_id
        self.durable = durable
        self.feed = feed
        self.coords = coords or CoordinateSystem()
        self.publish_locks = publish_locks

        self._owns_bus = event_bus is None
        self.event_bus = event_bus or EventBus()

        self.store = CardStore(self.coords.bounds)
        self.locks = LockManager(ttl_seconds=lock_ttl, clock=clock)
        self.controller = OptimisticUpdateController(
            self.store,
            durable,
            persist_timeout=persist_timeout,
            retry_attempts=retry_attempts,
            retry_backoff=retry_backoff,
            on_late_success=self._on_late_success,
            on_outcome=self._on_outcome,
        )
        self.drag = DragController(
            self.store, self.controller, self.locks, participant_id, self.coords
        )

        self.merger: ChangeFeedMerger | None = None
        self.project_id: str | None = None
        self._hovered: set[str] = set()
        self._feed_task: asyncio.Future | None = None
        self._started = False
        self._closed = False

        self._unsubscribe_store = self.store.subscribe(self._on_store_change)

    # ========== Lifecycle ==========

    async def start(self) -> None:
        """Start the event bus and the feed connection (idempotent)."""
        if self._started:
            return
        self._started = True
        if self._owns_bus:
            self.event_bus.start()
        if not self.feed.is_connected():
            self._feed_task = asyncio.ensure_future(self.feed.connect())
            # Let the connection attempt begin before returning
            await asyncio.sleep(0)
        logger.info(f"MatrixEngine started for {self.participant_id}")

    async def open_project(self, project_id: str) -> list[Card]:
        """
        Make `project_id` the active scope and load its cards.

        The previous scope is torn down completely (feed handlers removed,
        in-flight mutations abandoned, store and locks cleared) before the new
        subscription is established.

        Raises:
            StoreError: If the initial load fails (no project is left active)
        """
        if self._closed:
            raise RuntimeError("engine is closed")
        if not project_id:
            raise ValidationError("Missing project scope")

        previous = self.project_id
        self._teardown_scope()
        if previous is not None and previous != project_id:
            logger.info(f"Switching project {previous} -> {project_id}")

        self.project_id = project_id
        self.controller.reset(project_id)
        self.merger = ChangeFeedMerger(
            self.feed,
            self.store,
            self.controller,
            self.locks,
            self.durable,
            self.participant_id,
            event_bus=self.event_bus,
        )
        self.merger.activate(project_id)

        await self.start()

        generation = self.controller.generation
        try:
            loaded = await self.durable.get_cards_by_project(project_id)
        except StoreError as e:
            logger.error(f"Failed to load project {project_id}: {e}")
            self._teardown_scope()
            raise

        if generation != self.controller.generation:
            # Another open_project won the race
            return self.store.list(self.project_id)

        # Feed events may have landed during the load; keep the newer value
        live = {c.id: c for c in self.store.list(project_id)}
        merged = []
        for card in loaded:
            current = live.pop(card.id, None)
            merged.append(current if current is not None and current.version > card.version else card)
        merged.extend(live.values())
        self.store.replace_project(project_id, merged)

        logger.info(f"Opened project {project_id} ({len(merged)} cards)")
        self.event_bus.publish(
            Events.PROJECT_OPENED, {"project_id": project_id, "cards": len(merged)}
        )
        return self.store.list(project_id)

    async def switch_project(self, project_id: str) -> list[Card]:
        return await self.open_project(project_id)

    def _teardown_scope(self) -> None:
        if self.merger is not None:
            self.merger.deactivate()
            self.merger = None
        self.drag.cancel_all()
        self._hovered.clear()
        self.controller.reset(None)
        self.locks.clear()
        self.store.clear()
        if self.project_id is not None:
            self.event_bus.publish(Events.PROJECT_CLOSED, {"project_id": self.project_id})
        self.project_id = None

    async def close(self) -> None:
        """Tear down the scope, stop the feed and release resources."""
        if self._closed:
            return
        self._closed = True
        self._teardown_scope()

        if self._feed_task is not None:
            await self.feed.disconnect()
            if not self._feed_task.done():
                self._feed_task.cancel()
            try:
                await self._feed_task
            except asyncio.CancelledError:
                pass
            self._feed_task = None

        await self.durable.close()
        self._unsubscribe_store()
        if self._owns_bus:
            self.event_bus.wait_idle(timeout=1.0)
            self.event_bus.stop()
        logger.info(f"MatrixEngine closed for {self.participant_id}")

    @property
    def closed(self) -> bool:
        return self._closed

    # ========== Queries ==========

    def cards(self) -> list[Card]:
        return self.store.list(self.project_id) if self.project_id else []

    def get_card(self, card_id: str) -> Card | None:
        return self.store.get(card_id)

    def _require_card(self, card_id: str) -> Card:
        card = self.store.get(card_id)
        if card is None:
            raise ValidationError(f"Unknown card {card_id}")
        return card

    def _require_project(self) -> str:
        if self.project_id is None:
            raise ValidationError("No active project")
        return self.project_id

    # ========== Edit intent (locks) ==========

    async def begin_edit(self, card_id: str) -> LockResult:
        """
        Claim the card for editing.

        Contention is a normal negative result, not an error. Calling again
        while holding the lock renews it.
        """
        self._require_card(card_id)
        result = self.locks.acquire(card_id, self.participant_id)
        if not result.granted:
            holder = result.lock.holder_id if result.lock else None
            self.event_bus.publish(Events.LOCK_DENIED, {"card_id": card_id, "holder_id": holder})
            return result

        self.event_bus.publish(
            Events.LOCK_ACQUIRED, {"card_id": card_id, "holder_id": self.participant_id}
        )
        if self.publish_locks:
            await self._publish_lock(card_id, result.lock.acquired_at)
        return result

    async def end_edit(self, card_id: str) -> bool:
        """Release our lock on the card; False if we did not hold it."""
        released = self.locks.release(card_id, self.participant_id)
        if released:
            self.event_bus.publish(
                Events.LOCK_RELEASED, {"card_id": card_id, "holder_id": self.participant_id}
            )
            if self.publish_locks and self.store.get(card_id) is not None:
                await self._publish_lock(card_id, None)
        return released

    def lock_status(self, card_id: str) -> LockStatus:
        return self.locks.status(card_id, self.participant_id)

    async def _publish_lock(self, card_id: str, acquired_at: datetime | None) -> None:
        """Write the lock columns through the controller so the version bump is tracked."""
        columns = {
            "editing_by": self.participant_id if acquired_at else None,
            "editing_at": acquired_at.isoformat() if acquired_at else None,
        }
        descriptor = MutationDescriptor(MutationKind.UPDATE, card_id, self.project_id, columns)

        async def persist() -> Card:
            return await self.durable.update_card(card_id, columns)

        # Lock columns are not card fields, so nothing changes locally until the ack
        result = await self.controller.perform(descriptor, lambda: self.store.get(card_id), persist)
        if result.rolled_back:
            # The local lock still gates this participant
            logger.warning(f"Could not publish lock state for {card_id}: {result.error}")

    def _guard_edit(self, card_id: str) -> None:
        if self.locks.is_locked_by_other(card_id, self.participant_id):
            lock = self.locks.get(card_id)
            raise CardLockedError(card_id, lock.holder_id if lock else None)
        if self.locks.status(card_id, self.participant_id).locked_by_self:
            # Activity renews our own lock
            self.locks.acquire(card_id, self.participant_id)

    # ========== Mutations ==========

    async def create_card(
        self,
        content: str = "",
        position: LogicalPosition | None = None,
        quadrant: Quadrant | None = None,
        collapsed: bool = False,
        priority: Priority | str = Priority.MODERATE,
        avoid_collisions: bool = True,
        attributes: dict[str, Any] | None = None,
    ) -> MutationResult:
        """
        Create a card in the active project.

        The target is `position`, else the center of `quadrant`, else the
        canvas center; with avoid_collisions it is nudged off existing cards.
        """
        project_id = self._require_project()

        if position is not None:
            target = position
        elif quadrant is not None:
            target = self.coords.denormalize(quadrant_center(quadrant))
        else:
            target = LogicalPosition(self.coords.canvas_width / 2, self.coords.canvas_height / 2)

        if avoid_collisions:
            placement = suggest_position(target, self.cards(), collapsed=collapsed)
            if placement.had_conflicts:
                logger.debug(f"Placement moved new card from {target} to {placement.position}")
            target = placement.position

        payload = {
            **(attributes or {}),
            "x": target.x,
            "y": target.y,
            "content": content,
            "priority": Priority(priority).value,
            "is_collapsed": collapsed,
            "created_by": self.participant_id,
        }
        return await self.controller.create_card(project_id, payload)

    async def update_card(self, card_id: str, changes: dict[str, Any]) -> MutationResult:
        self._require_card(card_id)
        self._guard_edit(card_id)
        return await self.controller.update_card(card_id, changes)

    async def move_card(self, card_id: str, position: LogicalPosition) -> MutationResult:
        self._require_card(card_id)
        self._guard_edit(card_id)
        return await self.controller.move_card(card_id, self.coords.clamp(position))

    async def toggle_collapse(self, card_id: str) -> MutationResult:
        card = self._require_card(card_id)
        return await self.update_card(card_id, {"collapsed": not card.collapsed})

    async def delete_card(self, card_id: str) -> MutationResult:
        self._require_card(card_id)
        self._guard_edit(card_id)
        result = await self.controller.delete_card(card_id)
        if result.status == MutationStatus.CONFIRMED:
            self.locks.release(card_id, self.participant_id)
        return result

    # ========== Drag ==========

    def begin_drag(self, card_id: str) -> DragResult:
        result = self.drag.begin_drag(card_id)
        if result.outcome == DragOutcome.REFUSED_LOCKED:
            self.event_bus.publish(
                Events.DRAG_REFUSED, {"card_id": card_id, "holder_id": result.lock_holder}
            )
        return result

    async def drag_end(
        self, card_id: str, pixel_delta: PixelPosition, container: ContainerSize
    ) -> DragResult:
        result = await self.drag.on_drag_end(card_id, pixel_delta, container)
        if result.outcome == DragOutcome.REFUSED_LOCKED:
            self.event_bus.publish(
                Events.DRAG_REFUSED, {"card_id": card_id, "holder_id": result.lock_holder}
            )
        return result

    def set_hovered(self, card_id: str, hovered: bool = True) -> None:
        if hovered:
            self._hovered.add(card_id)
        else:
            self._hovered.discard(card_id)

    # ========== Rendering support ==========

    def project_card(
        self, card_id: str, dims: MatrixDimensions = DEFAULT_MATRIX_DIMENSIONS
    ) -> CardView:
        """Project a stored card into `dims` for the render pass."""
        card = self._require_card(card_id)
        normalized = self.coords.normalize(card.position)
        state = InteractionState(
            dragging=self.drag.is_dragging(card_id),
            editing=self.locks.get(card_id) is not None,
            hovered=card_id in self._hovered,
        )
        return CardView(
            card_id=card_id,
            pixel=to_pixel(normalized, dims),
            percent=logical_to_percent(card.position),
            quadrant=self.coords.quadrant(card.position),
            z=compute_stack_order(state),
            lock=self.lock_status(card_id),
        )

    def project_all(self, dims: MatrixDimensions = DEFAULT_MATRIX_DIMENSIONS) -> list[CardView]:
        return [self.project_card(card.id, dims) for card in self.cards()]

    # ========== Hooks ==========

    def _on_store_change(self, change: StoreChange) -> None:
        self.event_bus.publish(
            Events.CARD_CHANGED,
            {
                "kind": change.kind.value,
                "card_id": change.card.id if change.card else None,
                "project_id": change.project_id or self.project_id,
            },
        )

    def _on_outcome(self, descriptor: MutationDescriptor, result: MutationResult) -> None:
        if result.status == MutationStatus.ROLLED_BACK:
            self.event_bus.publish(Events.MUTATION_ROLLED_BACK, result.to_dict())
        elif result.status == MutationStatus.CONFIRMED:
            self.event_bus.publish(Events.MUTATION_CONFIRMED, result.to_dict())

    def _on_late_success(self, descriptor: MutationDescriptor, card: Card | None) -> None:
        """A timed-out persist landed after all; merge it like a remote change."""
        if descriptor.project_id != self.project_id:
            return

        entity_id = card.id if card is not None else descriptor.entity_id
        if self.controller.has_pending(entity_id):
            if card is None:
                self.controller.observe_remote_delete(entity_id)
            else:
                self.controller.observe_remote(card)
        elif card is None:
            self.store.remove(entity_id)
        else:
            current = self.store.get(card.id)
            if current is None or current.version <= card.version:
                self.store.upsert(card)

        self.event_bus.publish(
            Events.MUTATION_LATE_SUCCESS,
            {"kind": descriptor.kind.value, "entity_id": entity_id},
        )

    # ========== Stats ==========

    def get_stats(self) -> dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "project_id": self.project_id,
            "cards": len(self.store),
            "pending": sorted(self.controller.pending_ids()),
            "locks": [lock.to_dict() for lock in self.locks.locks_held_by(self.participant_id)],
            "merger": self.merger.get_stats() if self.merger else None,
            "event_bus": self.event_bus.get_stats(),
        }
