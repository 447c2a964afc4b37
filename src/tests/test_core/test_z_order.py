"""
Tests for display stacking order
"""

import itertools

from core.z_order import IDLE, InteractionState, compute_stack_order, stack_order_for


class TestStackOrder:
    """compute_stack_order precedence"""

    def test_base_value(self):
        assert compute_stack_order(IDLE) == 10

    def test_single_flags(self):
        assert stack_order_for(hovered=True) == 20
        assert stack_order_for(editing=True) == 30
        assert stack_order_for(dragging=True) == 50

    def test_dragging_dominates(self):
        for editing, hovered in itertools.product([False, True], repeat=2):
            assert stack_order_for(dragging=True, editing=editing, hovered=hovered) == 50

    def test_editing_beats_hover(self):
        assert stack_order_for(editing=True, hovered=True) == 30

    def test_strictly_ordered(self):
        values = [
            compute_stack_order(InteractionState(dragging=True)),
            compute_stack_order(InteractionState(editing=True)),
            compute_stack_order(InteractionState(hovered=True)),
            compute_stack_order(IDLE),
        ]
        assert values == sorted(values, reverse=True)
        assert len(set(values)) == 4
