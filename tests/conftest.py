import fakeredis
import pytest


class FakeStore:
    """
    In-memory store shared by every connection it hands out.

    Each call to ``connect`` returns a new client, like a worker opening its
    own connection, but all of them talk to the same fake server. Only
    usable with the harness in thread mode.
    """

    def __init__(self) -> None:
        self.server = fakeredis.FakeServer()

    def connect(self) -> fakeredis.FakeRedis:
        return fakeredis.FakeRedis(server=self.server, decode_responses=True)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def client(store):
    c = store.connect()
    yield c
    c.close()


@pytest.fixture
def other_client(store):
    """A second connection to the same store, as another worker would have."""
    c = store.connect()
    yield c
    c.close()
