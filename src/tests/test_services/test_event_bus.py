"""
Tests for EventBus
"""

import gc

from services import Events
from services.event_bus import EventBus


class TestEventBusSubscription:
    """Tests for event subscription"""

    def test_subscribe_to_event(self, event_bus):
        """Handler is called with name and data"""
        received = []

        def handler(event_dict):
            received.append(event_dict)

        event_bus.subscribe(Events.CARD_CHANGED, handler)
        event_bus.publish(Events.CARD_CHANGED, {"card_id": "c1"})
        assert event_bus.wait_idle(timeout=2.0)

        assert received == [{"name": "card.changed", "data": {"card_id": "c1"}}]

    def test_unsubscribe_from_event(self, event_bus):
        received = []

        def handler(data):
            received.append(data)

        event_bus.subscribe(Events.CARD_CHANGED, handler)
        event_bus.unsubscribe(Events.CARD_CHANGED, handler)

        event_bus.publish(Events.CARD_CHANGED, {"card_id": "c1"})
        assert event_bus.wait_idle(timeout=2.0)

        assert received == []

    def test_duplicate_subscribe_is_ignored(self, event_bus):
        received = []

        def handler(event_dict):
            received.append(event_dict["data"])

        event_bus.subscribe(Events.LOCK_ACQUIRED, handler)
        event_bus.subscribe(Events.LOCK_ACQUIRED, handler)
        event_bus.publish(Events.LOCK_ACQUIRED, {"card_id": "c1"})
        assert event_bus.wait_idle(timeout=2.0)

        assert len(received) == 1

    def test_bound_method_unsubscribe(self, event_bus):
        """Bound methods are matched by (instance, function), not identity"""

        class Listener:
            def __init__(self):
                self.events = []

            def on_event(self, event_dict):
                self.events.append(event_dict["data"])

        listener = Listener()
        event_bus.subscribe(Events.DRAG_REFUSED, listener.on_event)
        event_bus.unsubscribe(Events.DRAG_REFUSED, listener.on_event)
        event_bus.publish(Events.DRAG_REFUSED, {"card_id": "c1"})
        assert event_bus.wait_idle(timeout=2.0)

        assert listener.events == []


class TestEventBusDelivery:
    """Tests for ordering and error isolation"""

    def test_events_delivered_in_order(self, event_bus):
        received = []

        def handler(event_dict):
            received.append(event_dict["data"]["n"])

        event_bus.subscribe(Events.CARD_CHANGED, handler)
        for n in range(5):
            event_bus.publish(Events.CARD_CHANGED, {"n": n})
        assert event_bus.wait_idle(timeout=2.0)

        assert received == [0, 1, 2, 3, 4]

    def test_failing_handler_does_not_block_others(self, event_bus):
        received = []

        def broken(_event_dict):
            raise RuntimeError("boom")

        def healthy(event_dict):
            received.append(event_dict["data"])

        event_bus.subscribe(Events.MUTATION_ROLLED_BACK, broken)
        event_bus.subscribe(Events.MUTATION_ROLLED_BACK, healthy)
        event_bus.publish(Events.MUTATION_ROLLED_BACK, {"entity_id": "c1"})
        assert event_bus.wait_idle(timeout=2.0)

        assert received == [{"entity_id": "c1"}]
        assert event_bus.get_stats()["errors"] == 1

    def test_publish_without_subscribers(self, event_bus):
        event_bus.publish(Events.FEED_CONNECTED, {"reconnect": False})
        assert event_bus.wait_idle(timeout=2.0)
        assert event_bus.get_stats()["events_published"] == 1


class TestEventBusIntrospection:
    """Tests for subscriber introspection helpers"""

    def test_has_subscribers_prunes_dead_weakrefs(self):
        local_bus = EventBus()

        def subscribe_temporary_handler():
            def handler(_event_dict):
                pass

            local_bus.subscribe(Events.CARD_CHANGED, handler, weak=True)

        subscribe_temporary_handler()
        gc.collect()

        assert local_bus.has_subscribers(Events.CARD_CHANGED) is False

    def test_strong_reference_survives(self):
        local_bus = EventBus()

        def subscribe_temporary_handler():
            def handler(_event_dict):
                pass

            local_bus.subscribe(Events.CARD_CHANGED, handler, weak=False)

        subscribe_temporary_handler()
        gc.collect()

        assert local_bus.has_subscribers(Events.CARD_CHANGED) is True

    def test_queue_full_drops_event(self):
        local_bus = EventBus(max_queue_size=1)

        local_bus.publish(Events.CARD_CHANGED, {"n": 1})
        local_bus.publish(Events.CARD_CHANGED, {"n": 2})

        stats = local_bus.get_stats()
        assert stats["events_published"] == 1
        assert stats["events_dropped"] == 1

    def test_stop_is_idempotent(self):
        local_bus = EventBus()
        local_bus.start()
        assert local_bus.running is True

        local_bus.stop()
        local_bus.stop()

        assert local_bus.running is False
