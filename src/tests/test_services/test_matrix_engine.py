"""
Tests for MatrixEngine - open/switch, collaboration, locks and projection
"""

import asyncio
import contextlib

import pytest

from core import CardLockedError, ValidationError
from models import (
    ContainerSize,
    DragOutcome,
    LogicalPosition,
    MutationStatus,
    PixelPosition,
    Quadrant,
)
from services import Events
from services.matrix_engine import MatrixEngine
from sources import LocalChangeFeed, StoreError, StoreErrorKind


@pytest.fixture
def seeded(durable, make_card):
    durable.seed(
        make_card("c1", x=130, y=130),
        make_card("c2", x=390, y=390),
        make_card("z1", x=10, y=10, project_id="project-2"),
    )


@contextlib.asynccontextmanager
async def opened(make_engine, *participants, project_id="project-1"):
    """Engines (publishing their locks) with the project open; closed on exit"""
    engines = []
    try:
        for participant in participants:
            engine = make_engine(participant, publish_locks=True)
            engines.append(engine)
            await engine.open_project(project_id)
        yield engines
    finally:
        for engine in engines:
            await engine.close()


class TestLifecycle:
    """open_project / switch_project / close"""

    @pytest.mark.asyncio
    async def test_open_loads_only_the_project(self, make_engine, seeded):
        engine = make_engine()
        try:
            cards = await engine.open_project("project-1")
            assert sorted(c.id for c in cards) == ["c1", "c2"]
            assert engine.project_id == "project-1"
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_switch_isolates_projects(self, make_engine, durable, feed, seeded):
        engine = make_engine()
        try:
            await engine.open_project("project-1")
            cards = await engine.switch_project("project-2")

            assert [c.id for c in cards] == ["z1"]
            # Late traffic for the old project is ignored
            await durable.update_card("c1", {"content": "late"})
            assert engine.get_card("c1") is None
            assert feed.listener_count("card.change") == 1
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_switch_abandons_in_flight_mutation(self, make_engine, durable, seeded):
        engine = make_engine()
        try:
            await engine.open_project("project-1")
            durable.latency = 0.05
            task = asyncio.ensure_future(engine.update_card("c1", {"content": "edited"}))
            await asyncio.sleep(0.01)

            await engine.switch_project("project-2")
            result = await task

            assert result.status == MutationStatus.ABANDONED
            assert engine.get_card("c1") is None
            assert [c.id for c in engine.cards()] == ["z1"]
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_failed_open_leaves_no_project(self, make_engine, durable, seeded):
        engine = make_engine()
        durable.fail_next(StoreErrorKind.FORBIDDEN, operation="list")
        try:
            with pytest.raises(StoreError):
                await engine.open_project("project-1")
            assert engine.project_id is None
            assert engine.cards() == []
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_open_requires_project_id(self, make_engine):
        engine = make_engine()
        try:
            with pytest.raises(ValidationError):
                await engine.open_project("")
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_close(self, make_engine, feed, seeded):
        engine = make_engine()
        await engine.open_project("project-1")

        await engine.close()
        await engine.close()

        assert engine.closed
        assert feed.listener_count("card.change") == 0
        with pytest.raises(RuntimeError):
            await engine.open_project("project-1")

    @pytest.mark.asyncio
    async def test_engine_owns_bus_and_feed_connection(self, durable):
        local_feed = LocalChangeFeed()
        engine = MatrixEngine("solo", durable, local_feed)

        await engine.open_project("project-1")
        assert local_feed.is_connected()
        assert engine.event_bus.running

        await engine.close()
        assert not local_feed.is_connected()
        assert not engine.event_bus.running

    def test_participant_is_required(self, durable, feed):
        with pytest.raises(ValueError):
            MatrixEngine("", durable, feed)


class TestCollaboration:
    """Two participants on one project"""

    @pytest.mark.asyncio
    async def test_create_is_seen_by_both(self, make_engine, seeded):
        async with opened(make_engine, "alice", "bob") as (alice, bob):
            result = await alice.create_card("Ship beta", position=LogicalPosition(260, 60))

            assert result.status == MutationStatus.CONFIRMED
            assert bob.get_card(result.card.id) == result.card
            assert len(alice.cards()) == 3

    @pytest.mark.asyncio
    async def test_moves_are_seen_by_both(self, make_engine, seeded):
        async with opened(make_engine, "alice", "bob") as (alice, bob):
            await bob.move_card("c1", LogicalPosition(300, 100))

            assert alice.get_card("c1").position == LogicalPosition(300, 100)
            assert alice.get_card("c1") == bob.get_card("c1")

    @pytest.mark.asyncio
    async def test_delete_is_seen_by_both(self, make_engine, seeded):
        async with opened(make_engine, "alice", "bob") as (alice, bob):
            result = await alice.delete_card("c2")

            assert result.status == MutationStatus.CONFIRMED
            assert alice.get_card("c2") is None
            assert bob.get_card("c2") is None

    @pytest.mark.asyncio
    async def test_edit_lock_contention(self, make_engine, seeded):
        async with opened(make_engine, "alice", "bob") as (alice, bob):
            granted = await alice.begin_edit("c1")
            denied = await bob.begin_edit("c1")

            assert granted.granted
            assert not denied.granted
            assert denied.lock.holder_id == "alice"

            status = bob.lock_status("c1")
            assert status.locked and not status.locked_by_self
            assert status.remaining_ttl_seconds == pytest.approx(300)

            with pytest.raises(CardLockedError):
                await bob.update_card("c1", {"content": "mine"})
            assert bob.begin_drag("c1").outcome == DragOutcome.REFUSED_LOCKED

            assert await alice.end_edit("c1") is True
            assert (await bob.begin_edit("c1")).granted

    @pytest.mark.asyncio
    async def test_abandoned_lock_expires(self, make_engine, clock, seeded):
        async with opened(make_engine, "alice", "bob") as (alice, bob):
            await alice.begin_edit("c1")

            clock.advance(301)

            assert bob.lock_status("c1").locked is False
            assert (await bob.begin_edit("c1")).granted

    @pytest.mark.asyncio
    async def test_lock_holder_can_still_edit(self, make_engine, seeded):
        async with opened(make_engine, "alice", "bob") as (alice, bob):
            await alice.begin_edit("c1")

            result = await alice.update_card("c1", {"content": "mine"})

            assert result.status == MutationStatus.CONFIRMED
            assert bob.get_card("c1").content == "mine"

    @pytest.mark.asyncio
    async def test_lock_write_during_edit_converges(self, make_engine, durable, seeded):
        async with opened(make_engine, "alice") as (alice,):
            durable.latency = 0.02
            edit = asyncio.ensure_future(alice.update_card("c1", {"content": "edited"}))
            await asyncio.sleep(0)
            edit_seq = alice.controller.pending_for("c1").seq

            lock_write = asyncio.ensure_future(alice.begin_edit("c1"))
            await asyncio.sleep(0.005)
            # The lock columns go through the controller like any other write
            assert alice.controller.pending_for("c1").seq > edit_seq

            granted = await lock_write
            await edit

            assert granted.granted
            assert alice.controller.pending_ids() == set()
            card = alice.get_card("c1")
            assert card.version == durable.row("c1")["version"] == 3
            assert card.content == "edited"

    @pytest.mark.asyncio
    async def test_drag_end_is_seen_by_other(self, make_engine, seeded):
        async with opened(make_engine, "alice", "bob") as (alice, bob):
            result = await alice.drag_end("c1", PixelPosition(100, 0), ContainerSize(1200, 1000))

            assert result.moved
            assert bob.get_card("c1").x == pytest.approx(173.33, abs=0.01)


class TestMutations:
    """create / toggle / rollback notifications"""

    @pytest.mark.asyncio
    async def test_create_in_quadrant(self, make_engine, seeded):
        async with opened(make_engine, "alice") as (alice,):
            result = await alice.create_card("strategic", quadrant=Quadrant.TOP_RIGHT)

            card = result.card
            assert alice.coords.quadrant(card.position) == Quadrant.TOP_RIGHT
            assert card.owner_id == "alice"
            assert card.priority == "moderate"

    @pytest.mark.asyncio
    async def test_create_avoids_existing_cards(self, make_engine, seeded):
        async with opened(make_engine, "alice") as (alice,):
            result = await alice.create_card("overlap", position=LogicalPosition(130, 130))
            assert result.card.position != LogicalPosition(130, 130)

    @pytest.mark.asyncio
    async def test_create_exactly_where_asked(self, make_engine, seeded):
        async with opened(make_engine, "alice") as (alice,):
            result = await alice.create_card(
                "overlap", position=LogicalPosition(130, 130), avoid_collisions=False
            )
            assert result.card.position == LogicalPosition(130, 130)

    @pytest.mark.asyncio
    async def test_create_without_project(self, make_engine):
        engine = make_engine()
        with pytest.raises(ValidationError):
            await engine.create_card("nowhere")
        await engine.close()

    @pytest.mark.asyncio
    async def test_toggle_collapse_keeps_position(self, make_engine, seeded):
        async with opened(make_engine, "alice") as (alice,):
            before = alice.get_card("c1")

            await alice.toggle_collapse("c1")

            after = alice.get_card("c1")
            assert after.collapsed is True
            assert after.position == before.position

    @pytest.mark.asyncio
    async def test_unknown_card(self, make_engine, seeded):
        async with opened(make_engine, "alice") as (alice,):
            with pytest.raises(ValidationError):
                await alice.update_card("missing", {"content": "x"})

    @pytest.mark.asyncio
    async def test_rollback_is_published(self, make_engine, durable, event_bus, seeded):
        rolled_back = []
        event_bus.subscribe(Events.MUTATION_ROLLED_BACK, rolled_back.append, weak=False)

        async with opened(make_engine, "alice") as (alice,):
            durable.fail_next(StoreErrorKind.CONFLICT, operation="update")

            result = await alice.move_card("c1", LogicalPosition(400, 400))

            assert result.rolled_back
            assert alice.get_card("c1").position == LogicalPosition(130, 130)

        assert event_bus.wait_idle(timeout=2.0)
        assert rolled_back[0]["data"]["entity_id"] == "c1"

    @pytest.mark.asyncio
    async def test_late_success_is_merged(self, make_engine, durable, event_bus, seeded):
        late = []
        event_bus.subscribe(Events.MUTATION_LATE_SUCCESS, late.append, weak=False)
        engine = make_engine(persist_timeout=0.02)
        try:
            await engine.open_project("project-1")
            durable.latency = 0.05

            result = await engine.update_card("c1", {"content": "slow"})
            assert result.rolled_back
            assert result.retryable
            assert engine.get_card("c1").content == ""

            await asyncio.sleep(0.1)
            assert engine.get_card("c1").content == "slow"
            assert event_bus.wait_idle(timeout=2.0)
            assert late[0]["data"]["entity_id"] == "c1"
        finally:
            await engine.close()


class TestProjection:
    """project_card"""

    @pytest.mark.asyncio
    async def test_view(self, make_engine, seeded):
        async with opened(make_engine, "alice") as (alice,):
            view = alice.project_card("c1")

            assert view.quadrant == Quadrant.TOP_LEFT
            assert view.pixel.x == pytest.approx(330.0)
            assert view.pixel.y == pytest.approx(275.0)
            assert view.percent[0] == pytest.approx(170 / 600 * 100)
            assert view.z == 10
            assert view.to_dict()["quadrant"] == "top-left"

    @pytest.mark.asyncio
    async def test_stacking_follows_interaction(self, make_engine, seeded):
        async with opened(make_engine, "alice") as (alice,):
            alice.set_hovered("c1")
            assert alice.project_card("c1").z == 20

            await alice.begin_edit("c1")
            assert alice.project_card("c1").z == 30

            alice.begin_drag("c1")
            assert alice.project_card("c1").z == 50

            alice.drag.cancel_drag("c1")
            await alice.end_edit("c1")
            alice.set_hovered("c1", False)
            assert alice.project_card("c1").z == 10

    @pytest.mark.asyncio
    async def test_project_all(self, make_engine, seeded):
        async with opened(make_engine, "alice") as (alice,):
            views = alice.project_all()
            assert {v.quadrant for v in views} == {Quadrant.TOP_LEFT, Quadrant.BOTTOM_RIGHT}
