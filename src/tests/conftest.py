"""
Shared test fixtures for pytest
"""

from datetime import datetime, timedelta, timezone

import pytest

from core import CardStore, LockManager, OptimisticUpdateController
from models import Card, LogicalPosition
from services import EventBus, setup_logging
from services.logger import cleanup_logging
from services.matrix_engine import MatrixEngine
from sources import InMemoryDurableStore, LocalChangeFeed

PROJECT = "project-1"
OTHER_PROJECT = "project-2"


class FakeClock:
    """Controllable wall clock for lock expiry"""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 10, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


def _make_card(card_id="c1", x=130.0, y=130.0, project_id=PROJECT, version=1, **fields):
    """Create a Card snapshot for tests"""
    return Card(
        id=card_id,
        project_id=project_id,
        position=LogicalPosition(x, y),
        version=version,
        **fields,
    )


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging(tmp_path_factory):
    """Setup logging for all tests (no console noise, logs under tmp)"""
    setup_logging(
        {
            "log_dir": str(tmp_path_factory.mktemp("logs")),
            "console_output": False,
            "file_output": False,
        }
    )
    yield
    cleanup_logging()


@pytest.fixture
def make_card():
    """Factory for Card snapshots: make_card("c1", x=130, y=130, version=1)"""
    return _make_card


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def feed():
    """Connected in-process change feed"""
    local_feed = LocalChangeFeed()
    local_feed.restore_connection()
    return local_feed


@pytest.fixture
def durable(feed):
    return InMemoryDurableStore(feed)


@pytest.fixture
def store():
    return CardStore()


@pytest.fixture
def locks(clock):
    return LockManager(ttl_seconds=300, clock=clock)


@pytest.fixture
def controller(store, durable):
    """Controller scoped to PROJECT with fast retries"""
    ctl = OptimisticUpdateController(
        store, durable, persist_timeout=1.0, retry_attempts=2, retry_backoff=0.0
    )
    ctl.reset(PROJECT)
    return ctl


@pytest.fixture
def event_bus():
    bus = EventBus()
    bus.start()
    yield bus
    bus.stop()


@pytest.fixture
def make_engine(durable, feed, event_bus, clock):
    """Factory for engines sharing one durable store and feed"""

    def factory(participant_id="alice", **kwargs):
        kwargs.setdefault("retry_backoff", 0.0)
        kwargs.setdefault("persist_timeout", 1.0)
        return MatrixEngine(
            participant_id, durable, feed, event_bus=event_bus, clock=clock, **kwargs
        )

    return factory
