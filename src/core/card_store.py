"""
CardStore - in-memory authoritative card collection

Holds the working set for the active project. Every write clamps the card's
position to the logical bounds, and every committed change is broadcast to
local listeners.

Thread-safe with an RLock. Listeners are called after the lock is released.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from models import CanvasBounds, Card

from .coordinates import clamp, default_bounds

logger = logging.getLogger(__name__)


class StoreChangeKind(Enum):
    UPSERT = "upsert"
    REMOVE = "remove"
    REPLACE = "replace"
    CLEAR = "clear"


@dataclass(frozen=True)
class StoreChange:
    """
    A committed CardStore change

    Attributes:
        kind: What happened
        card: New value (UPSERT) or removed value (REMOVE); None for bulk changes
        previous: Value before an UPSERT, if the card existed
        project_id: Project scope of a REPLACE
    """

    kind: StoreChangeKind
    card: Card | None = None
    previous: Card | None = None
    project_id: str | None = None


Listener = Callable[[StoreChange], None]


class CardStore:
    """
    Authoritative local card collection

    Usage:
        store = CardStore()
        unsubscribe = store.subscribe(lambda change: print(change.kind))
        store.upsert(card)
        store.list("project-1")
    """

    def __init__(self, bounds: CanvasBounds | None = None):
        self._bounds = bounds or default_bounds()
        self._cards: dict[str, Card] = {}
        self._listeners: list[Listener] = []
        self._lock = threading.RLock()

    @property
    def bounds(self) -> CanvasBounds:
        return self._bounds

    # ========== Reads ==========

    def get(self, card_id: str) -> Card | None:
        with self._lock:
            return self._cards.get(card_id)

    def list(self, project_id: str | None = None) -> list[Card]:
        """Cards of a project (all cards if project_id is None), in insertion order."""
        with self._lock:
            cards = list(self._cards.values())
        if project_id is None:
            return cards
        return [c for c in cards if c.project_id == project_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._cards)

    def __contains__(self, card_id: str) -> bool:
        with self._lock:
            return card_id in self._cards

    # ========== Writes ==========

    def upsert(self, card: Card) -> Card:
        """
        Insert or replace a card; returns the stored (clamped) value.

        Writing a value identical to the current one changes nothing and
        notifies nobody.
        """
        card = self.clamped(card)
        with self._lock:
            previous = self._cards.get(card.id)
            if previous == card:
                return previous
            self._cards[card.id] = card

        self._notify(StoreChange(StoreChangeKind.UPSERT, card=card, previous=previous))
        return card

    def remove(self, card_id: str) -> Card | None:
        """Remove a card; returns the removed value (None if absent)."""
        with self._lock:
            removed = self._cards.pop(card_id, None)

        if removed is not None:
            self._notify(StoreChange(StoreChangeKind.REMOVE, card=removed))
        return removed

    def replace_project(self, project_id: str, cards: list[Card]) -> None:
        """
        Swap the project's working set in one step.

        Cards of other projects are dropped as well; the store only ever holds
        one project scope.
        """
        clamped = [self.clamped(c) for c in cards if c.project_id == project_id]
        with self._lock:
            self._cards = {c.id: c for c in clamped}

        logger.debug(f"CardStore replaced scope {project_id} ({len(clamped)} cards)")
        self._notify(StoreChange(StoreChangeKind.REPLACE, project_id=project_id))

    def clear(self) -> None:
        with self._lock:
            had_cards = bool(self._cards)
            self._cards = {}

        if had_cards:
            self._notify(StoreChange(StoreChangeKind.CLEAR))

    # ========== Subscriptions ==========

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns an unsubscribe function."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, change: StoreChange):
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(change)
            except Exception as e:
                logger.error(f"CardStore listener error ({change.kind.value}): {e}")

    def clamped(self, card: Card) -> Card:
        """Copy of `card` with its position clamped to the store bounds."""
        position = clamp(card.position, self._bounds)
        if position is card.position:
            return card
        logger.debug(f"Clamped card {card.id} from {card.position} to {position}")
        return card.moved_to(position)
