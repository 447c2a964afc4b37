"""
Display stacking order for cards

Precedence is strict: dragging > editing > hovered > base. Values come from
Config.Z_INDEX.
"""

from dataclasses import dataclass
from functools import lru_cache

from config import config


@dataclass(frozen=True)
class InteractionState:
    """Per-card interaction flags (hashable so results can be memoized)."""

    dragging: bool = False
    editing: bool = False
    hovered: bool = False


IDLE = InteractionState()


@lru_cache(maxsize=16)
def compute_stack_order(state: InteractionState) -> int:
    """Stacking value for a card in the given interaction state."""
    if state.dragging:
        return config.Z_INDEX["card_dragging"]
    if state.editing:
        return config.Z_INDEX["card_editing"]
    if state.hovered:
        return config.Z_INDEX["card_hover"]
    return config.Z_INDEX["card_base"]


def stack_order_for(dragging: bool = False, editing: bool = False, hovered: bool = False) -> int:
    return compute_stack_order(InteractionState(dragging, editing, hovered))
