"""
Tests for the feed BaseSubscriber
"""

import pytest

from feed.normalizer import row_change_message
from feed.subscriber import BaseSubscriber
from models import ChangeType
from sources import LocalChangeFeed


class RecordingSubscriber(BaseSubscriber):
    def __init__(self, feed):
        self.changes = []
        self.connections = []
        self.invalid = []
        super().__init__(feed)

    def on_card_change(self, event):
        self.changes.append(event)

    def on_connection_change(self, connected):
        self.connections.append(connected)

    def on_invalid_event(self, raw_event, error):
        self.invalid.append(error)


class RawSubscriber(RecordingSubscriber):
    def __init__(self, feed):
        self.raw = []
        super().__init__(feed)

    def on_raw_event(self, event):
        self.raw.append(event)


def _update(card_id="c1", **overrides):
    row = {"id": card_id, "project_id": "project-1", "x": 1, "y": 2}
    row.update(overrides)
    return row_change_message(ChangeType.UPDATE, row)


class TestBaseSubscriber:
    """Parsing and routing"""

    def test_abstract(self, feed):
        with pytest.raises(TypeError):
            BaseSubscriber(feed)

    def test_card_change_is_typed(self, feed):
        subscriber = RecordingSubscriber(feed)

        feed.publish(_update())

        assert len(subscriber.changes) == 1
        assert subscriber.changes[0].entity_id == "c1"
        assert subscriber.changes[0].seq is not None

    def test_malformed_change_goes_to_invalid_handler(self, feed):
        subscriber = RecordingSubscriber(feed)

        feed.publish(_update(x="not a number"))
        feed.publish(row_change_message(ChangeType.UPDATE, None))

        assert subscriber.changes == []
        assert len(subscriber.invalid) == 2

    def test_connection_changes(self, feed):
        subscriber = RecordingSubscriber(feed)

        feed.drop_connection()
        feed.restore_connection()

        assert subscriber.connections == [False, True]

    def test_raw_events_only_when_overridden(self, feed):
        plain = RecordingSubscriber(feed)
        raw = RawSubscriber(feed)

        assert feed.listener_count("*") == 1
        feed.publish({"type": "presence", "payload": {"who": "bob"}})
        feed.publish(_update())

        assert [e["type"] for e in raw.raw] == ["raw.presence"]
        assert len(plain.changes) == 1

    def test_unsubscribe(self, feed):
        subscriber = RecordingSubscriber(feed)
        assert subscriber.subscribed

        subscriber.unsubscribe()
        feed.publish(_update())

        assert subscriber.changes == []
        assert not subscriber.subscribed
        assert feed.listener_count("card.change") == 0


class TestLocalChangeFeed:
    """In-process feed semantics"""

    def test_messages_are_lost_while_disconnected(self):
        local_feed = LocalChangeFeed()
        subscriber = RecordingSubscriber(local_feed)

        local_feed.publish(_update())

        assert subscriber.changes == []
        assert local_feed.dropped_messages == 1

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self):
        local_feed = LocalChangeFeed()
        subscriber = RecordingSubscriber(local_feed)

        await local_feed.connect()
        await local_feed.disconnect()
        await local_feed.disconnect()

        assert subscriber.connections == [True, False]
        assert local_feed.state.reconnects == 0
