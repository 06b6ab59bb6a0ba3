import pytest

from chatnotify.repositories.notification_store import NotificationStore
from chatnotify.services.aggregation import AggregationView
from chatnotify.services.event_ingestor import EventIngestor
from chatnotify.services.mutation_coordinator import MutationCoordinator
from chatnotify.utils.config import SessionConfig
from tests.factories import FakeGateway


@pytest.fixture
def store():
    return NotificationStore()


@pytest.fixture
def ingestor(store):
    return EventIngestor(store)


@pytest.fixture
def view():
    return AggregationView()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def coordinator(store, gateway):
    return MutationCoordinator(store, gateway)


@pytest.fixture
def config():
    return SessionConfig(user_id="me")
