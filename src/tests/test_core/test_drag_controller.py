"""
Tests for DragController - pixel deltas to logical moves
"""

import pytest

from core import DragController
from core.coordinates import quadrant_of
from models import ContainerSize, DragOutcome, LogicalPosition, PixelPosition, Quadrant
from sources.durable_store import StoreErrorKind

CONTAINER = ContainerSize(1200, 1000)


@pytest.fixture
def drag(store, controller, locks):
    return DragController(store, controller, locks, participant_id="alice")


@pytest.fixture
def card(store, durable, make_card):
    seeded = make_card("c1", x=130, y=130)
    durable.seed(seeded)
    store.upsert(seeded)
    return seeded


class TestScaling:
    """logical_delta"""

    def test_scale_is_per_axis(self, drag):
        dx, dy = drag.logical_delta(PixelPosition(120, 100), CONTAINER)
        assert dx == pytest.approx(52.0)
        assert dy == pytest.approx(52.0)

    def test_scale_is_linear(self, drag):
        one = drag.logical_delta(PixelPosition(37, -11), CONTAINER)
        three = drag.logical_delta(PixelPosition(111, -33), CONTAINER)
        assert three[0] == pytest.approx(3 * one[0])
        assert three[1] == pytest.approx(3 * one[1])

    def test_scale_uses_measured_container(self, drag):
        small, _ = drag.logical_delta(PixelPosition(100, 0), ContainerSize(600, 500))
        large, _ = drag.logical_delta(PixelPosition(100, 0), ContainerSize(1800, 1500))
        assert small == pytest.approx(3 * large)


class TestDragEnd:
    """on_drag_end outcomes"""

    @pytest.mark.asyncio
    async def test_consecutive_drags(self, drag, store, card):
        first = await drag.on_drag_end("c1", PixelPosition(100, 0), CONTAINER)

        assert first.outcome == DragOutcome.MOVED
        assert first.position.x == pytest.approx(173.33, abs=0.01)
        assert quadrant_of(first.position) == Quadrant.TOP_LEFT

        second = await drag.on_drag_end("c1", PixelPosition(150, 0), CONTAINER)

        assert second.moved
        assert second.position.x == pytest.approx(238.33, abs=0.01)
        assert store.get("c1").x == pytest.approx(238.33, abs=0.01)
        assert store.get("c1").y == 130
        assert quadrant_of(store.get("c1").position) == Quadrant.TOP_LEFT

    @pytest.mark.asyncio
    async def test_drag_across_the_midline(self, drag, store, card):
        result = await drag.on_drag_end("c1", PixelPosition(301, 0), CONTAINER)

        assert result.position.x == pytest.approx(260.43, abs=0.01)
        assert quadrant_of(store.get("c1").position) == Quadrant.TOP_RIGHT

    @pytest.mark.asyncio
    async def test_tiny_movement_is_no_op(self, drag, durable, card):
        result = await drag.on_drag_end("c1", PixelPosition(0.3, -0.4), CONTAINER)

        assert result.outcome == DragOutcome.NO_OP
        assert durable.calls == []

    @pytest.mark.asyncio
    async def test_drag_is_clamped(self, drag, store, card):
        result = await drag.on_drag_end("c1", PixelPosition(5000, -5000), CONTAINER)

        assert result.position == LogicalPosition(540, -20)
        assert store.get("c1").position == LogicalPosition(540, -20)

    @pytest.mark.asyncio
    async def test_drag_past_clamped_edge_is_no_op(self, drag, store, durable, make_card):
        edge = make_card("edge", x=540, y=130)
        durable.seed(edge)
        store.upsert(edge)

        result = await drag.on_drag_end("edge", PixelPosition(200, 0), CONTAINER)

        assert result.outcome == DragOutcome.NO_OP
        assert durable.calls == []

    @pytest.mark.asyncio
    async def test_unknown_card(self, drag):
        result = await drag.on_drag_end("missing", PixelPosition(10, 10), CONTAINER)
        assert result.outcome == DragOutcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_locked_by_other(self, drag, locks, durable, card):
        locks.acquire("c1", "bob")

        result = await drag.on_drag_end("c1", PixelPosition(100, 0), CONTAINER)

        assert result.outcome == DragOutcome.REFUSED_LOCKED
        assert result.lock_holder == "bob"
        assert durable.calls == []

    @pytest.mark.asyncio
    async def test_own_lock_does_not_block(self, drag, locks, card):
        locks.acquire("c1", "alice")

        result = await drag.on_drag_end("c1", PixelPosition(100, 0), CONTAINER)

        assert result.moved

    @pytest.mark.asyncio
    async def test_rejected_move_reports_failure(self, drag, store, durable, card):
        durable.fail_next(StoreErrorKind.FORBIDDEN, operation="update")

        result = await drag.on_drag_end("c1", PixelPosition(100, 0), CONTAINER)

        assert result.outcome == DragOutcome.FAILED
        assert result.mutation.rolled_back
        assert store.get("c1").x == 130


class TestBeginDrag:
    """begin_drag gating"""

    def test_begin_tracks_dragging(self, drag, card):
        result = drag.begin_drag("c1")

        assert result.outcome == DragOutcome.STARTED
        assert drag.is_dragging("c1")

        drag.cancel_all()
        assert not drag.is_dragging("c1")

    def test_begin_refused_when_locked(self, drag, locks, card):
        locks.acquire("c1", "bob")

        result = drag.begin_drag("c1")

        assert result.outcome == DragOutcome.REFUSED_LOCKED
        assert not drag.is_dragging("c1")

    @pytest.mark.asyncio
    async def test_drag_end_clears_dragging(self, drag, card):
        drag.begin_drag("c1")
        await drag.on_drag_end("c1", PixelPosition(100, 0), CONTAINER)
        assert not drag.is_dragging("c1")
