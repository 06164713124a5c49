import pytest

from backend import MemoryBackend
from coordinator import RoomCoordinator
from tests.fakes import FakeConnection


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def coordinator(backend):
    return RoomCoordinator(backend)


@pytest.fixture
def make_connection():
    def factory(connection_id=None):
        return FakeConnection(connection_id)

    return factory
