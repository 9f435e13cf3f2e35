"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from app.chat.service import build_chat_services, set_chat_services
from app.config import AppSettings, DatabaseSettings
from app.kv import InMemoryKeyValueStore
from app.main import app


class FakeWebSocket:
    """Stand-in for a Starlette WebSocket that records what it is sent.

    With ``fail_after=n`` the first ``n`` sends succeed and later ones raise,
    like a client that dropped mid-stream.
    """

    def __init__(self, fail_after=None):
        self.accepted = False
        self.sent = []
        self._fail_after = fail_after

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self._fail_after is not None and len(self.sent) >= self._fail_after:
            raise RuntimeError("connection closed")
        self.sent.append(data)

    def events(self, name=None):
        return [frame for frame in self.sent if name is None or frame["event"] == name]


async def pending_offline(services, user_id):
    """Number of snapshots waiting in a user's offline queue."""
    return len(await services.kv.list_range(services.offline.key(user_id)))


@pytest.fixture
def settings():
    """Settings with an in-memory message log and the in-process cache."""
    return AppSettings(database=DatabaseSettings(path=":memory:"))


@pytest.fixture
def services(settings):
    """Fresh chat pipeline installed as the global instance."""
    services = build_chat_services(settings, kv=InMemoryKeyValueStore())
    set_chat_services(services)
    yield services
    set_chat_services(None)
    services.messages.close()
    services.users.close()


@pytest.fixture
def api_client(services):
    """Provide a TestClient for the main FastAPI app backed by ``services``.

    The lifespan is not entered, so the fixture-provided services are used
    and not closed by application shutdown.
    """
    return TestClient(app)
