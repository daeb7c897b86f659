"""
Pytest fixtures: управляемые часы, транспорт с записью событий, менеджер сессий.
"""
from collections import defaultdict

import pytest
from fastapi.testclient import TestClient

from duelroom.auth import sign_identity
from duelroom.config import AppConfig, SessionConfig
from duelroom.errors import DeliveryFailed
from duelroom.main import create_app
from duelroom.session import SessionManager

SECRET = "test-secret"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTransport:
    """Запоминает доставленные payload'ы по connection_id."""

    def __init__(self):
        self.sent: dict[str, list[dict]] = defaultdict(list)
        self.broken: set[str] = set()

    def deliver(self, connection_id, payload):
        if connection_id in self.broken:
            raise DeliveryFailed(f"{connection_id} is broken")
        self.sent[connection_id].append(payload)

    def types(self, connection_id) -> list[str]:
        return [p["type"] for p in self.sent[connection_id]]

    def last(self, connection_id) -> dict:
        return self.sent[connection_id][-1]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def sessions(clock, transport):
    return SessionManager(SessionConfig(), transport=transport, clock=clock)


@pytest.fixture
def app_config():
    return AppConfig(identity_secret=SECRET, session=SessionConfig())


@pytest.fixture
def app_sessions(app_config, clock):
    return SessionManager(app_config.session, clock=clock)


@pytest.fixture
def client(app_config, app_sessions):
    app = create_app(app_config, sessions=app_sessions, run_scheduler=False)
    with TestClient(app) as c:
        yield c


def identity_headers(user_id: str, display_name: str = "") -> dict[str, str]:
    return {"X-Identity-Token": sign_identity(user_id, display_name or user_id.title(), SECRET)}
