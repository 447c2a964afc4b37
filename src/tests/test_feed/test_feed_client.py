"""
Tests for ChangeFeedClient - async WebSocket client for the card change feed.
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from feed.client import ChangeFeedClient, ClientMetrics
from feed.config import FeedConfig
from feed.connection import ConnectionStatus
from feed.normalizer import row_change_message
from models import ChangeType


class FakeWebSocket:
    """Async context manager that replays messages, then ends the session."""

    def __init__(self, client, messages):
        self.client = client
        self.messages = messages
        self.sent = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._replay()

    async def _replay(self):
        for message in self.messages:
            yield message
        # Stop the reconnect loop once the script is exhausted
        self.client._intentional_close = True


def _change(card_id="c1"):
    return row_change_message(
        ChangeType.UPDATE, {"id": card_id, "project_id": "project-1", "x": 1, "y": 2}
    )


# =============================================================================
# Configuration
# =============================================================================


class TestFeedConfig:
    """FeedConfig defaults and overrides"""

    def test_default_url(self):
        assert FeedConfig().ws_url == "ws://localhost:9100/realtime"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("MATRIX_FEED_HOST", "feed.example.com")
        monkeypatch.setenv("MATRIX_FEED_PORT", "443")
        monkeypatch.setenv("MATRIX_FEED_SECURE", "true")

        assert FeedConfig().ws_url == "wss://feed.example.com:443/realtime"

    def test_client_uses_config(self):
        client = ChangeFeedClient(FeedConfig(reconnect_delay=0.5, table="cards"))

        assert client.reconnect_delay == 0.5
        assert client.table == "cards"
        assert client.is_connected() is False

    def test_url_override(self):
        client = ChangeFeedClient(url="ws://example.com:8080/ws")
        assert client.url == "ws://example.com:8080/ws"


# =============================================================================
# Listeners and dispatch
# =============================================================================


class TestDispatch:
    """on / _handle_message"""

    def test_card_change_is_dispatched(self):
        client = ChangeFeedClient()
        received = []
        client.on("card.change", received.append)

        client._handle_message(_change())

        assert len(received) == 1
        assert received[0]["type"] == "card.change"
        assert received[0]["data"]["record"]["id"] == "c1"

    def test_wildcard_receives_everything(self):
        client = ChangeFeedClient()
        received = []
        client.on("*", received.append)

        client._handle_message(_change())
        client._handle_message({"type": "heartbeat"})

        assert [e["type"] for e in received] == ["card.change", "feed.heartbeat"]

    def test_unsubscribe(self):
        client = ChangeFeedClient()
        received = []
        unsubscribe = client.on("card.change", received.append)

        unsubscribe()
        client._handle_message(_change())

        assert received == []

    def test_failing_listener_does_not_block_others(self):
        client = ChangeFeedClient()
        received = []

        def broken(_event):
            raise RuntimeError("boom")

        client.on("card.change", broken)
        client.on("card.change", received.append)
        client._handle_message(_change())

        assert len(received) == 1

    def test_metrics_and_buffer(self):
        client = ChangeFeedClient(max_buffer_size=2)

        for card_id in ("a", "b", "c"):
            client._handle_message(_change(card_id))

        recent = client.get_recent_events("card.change")
        assert [e["data"]["record"]["id"] for e in recent] == ["b", "c"]
        assert client.get_metrics().message_count == 3
        assert client.get_metrics().last_message_time is not None

    def test_metrics_to_dict(self):
        assert ClientMetrics(message_count=3).to_dict()["message_count"] == 3


# =============================================================================
# Connection lifecycle
# =============================================================================


class TestConnection:
    """connect / disconnect / backoff"""

    @pytest.mark.asyncio
    async def test_connect_subscribes_and_streams(self):
        client = ChangeFeedClient(url="ws://test/realtime")
        fake = FakeWebSocket(client, [json.dumps(_change()), "not json", "[1, 2]"])
        changes, connection = [], []
        client.on("card.change", changes.append)
        client.on("connection", connection.append)

        with patch("websockets.connect", return_value=fake):
            await asyncio.wait_for(client.connect(), timeout=2.0)

        assert fake.sent == [{"type": "subscribe", "table": "cards", "event": "*"}]
        assert len(changes) == 1
        assert client.get_metrics().parse_errors == 2
        assert [e["connected"] for e in connection] == [True, False]
        assert connection[0]["reconnect"] is False
        assert client.get_metrics().connection_attempts == 1
        assert client.is_connected() is False

    @pytest.mark.asyncio
    async def test_failed_connect_reports_error(self):
        client = ChangeFeedClient(url="ws://test/realtime")
        events = []

        def on_connection(event):
            events.append(event)
            client._intentional_close = True

        client.on("connection", on_connection)

        with patch("websockets.connect", side_effect=OSError("refused")):
            await asyncio.wait_for(client.connect(), timeout=2.0)

        assert events[0]["connected"] is False
        assert events[0]["code"] == 1006
        assert client.state.status == ConnectionStatus.ERROR
        assert client.state.error_message == "refused"

    @pytest.mark.asyncio
    async def test_backoff_grows_and_caps(self):
        client = ChangeFeedClient(
            FeedConfig(reconnect_delay=0.01, max_reconnect_delay=0.03, reconnect_multiplier=2.0)
        )

        await client._backoff()
        assert client._current_reconnect_delay == pytest.approx(0.02)
        await client._backoff()
        assert client._current_reconnect_delay == pytest.approx(0.03)
        await client._backoff()
        assert client._current_reconnect_delay == pytest.approx(0.03)

    @pytest.mark.asyncio
    async def test_connect_resets_backoff(self):
        client = ChangeFeedClient(FeedConfig(reconnect_delay=0.01))
        client._current_reconnect_delay = 5.0

        client._on_connected()

        assert client._current_reconnect_delay == 0.01
        assert client.is_connected()

    @pytest.mark.asyncio
    async def test_second_connection_is_a_reconnect(self):
        client = ChangeFeedClient()
        events = []
        client.on("connection", events.append)

        client._on_connected()
        client._on_disconnected(code=1006, reason="dropped")
        client._on_connected()

        assert [e["connected"] for e in events] == [True, False, True]
        assert events[-1]["reconnect"] is True

    @pytest.mark.asyncio
    async def test_disconnect_closes_socket(self):
        client = ChangeFeedClient()
        mock_ws = AsyncMock()
        client._ws = mock_ws

        await client.disconnect()

        mock_ws.close.assert_called_once()
        assert client._ws is None
        assert client.is_connected() is False
