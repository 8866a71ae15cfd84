# tests/conftest.py
"""
Shared pytest fixtures for the CapyCode backend tests.

Provides:
- Fake WebSocket transport (records every frame it is sent)
- Fake identity resolver and record directory
- Relay / registry / monitor wired together
- App factory, TestClient, and async HTTP client
"""
import json
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from starlette.websockets import WebSocketState

from app.core.config import Settings
from app.core.exceptions import IdentityProviderError, InvalidTokenError, MissingTokenError
from app.lib.identity import UserIdentity
from app.lib.websocket import ConnectionRegistry
from app.main import create_app
from app.realtime import LivenessMonitor, RelayServer


# ═══════════════════════════════════════════════════════
# FAKES
# ═══════════════════════════════════════════════════════

class FakeWebSocket:
    """Stands in for a Starlette WebSocket on the server side."""

    def __init__(self, fail_send: bool = False):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: List[str] = []
        self.close_code: Optional[int] = None
        self.fail_send = fail_send

    async def send_text(self, data: str) -> None:
        if self.fail_send:
            raise RuntimeError("transport gone")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.application_state = WebSocketState.DISCONNECTED
        self.close_code = code

    def drop(self) -> None:
        """Peer disappears without a close handshake."""
        self.client_state = WebSocketState.DISCONNECTED

    def messages(self) -> List[Dict[str, Any]]:
        return [json.loads(frame) for frame in self.sent]

    def types(self) -> List[str]:
        return [m["type"] for m in self.messages()]


USERS = {
    "token-u1": UserIdentity(id="U1", email="u1@example.com"),
    "token-u1-tablet": UserIdentity(id="U1", email="u1@example.com"),
    "token-u2": UserIdentity(id="U2", email="u2@example.com"),
    "token-admin": UserIdentity(id="A1", email="admin@example.com", role="admin"),
}


class FakeResolver:
    """Token table instead of Supabase. `provider-down` simulates an outage."""

    def __init__(self, users: Optional[Dict[str, UserIdentity]] = None):
        self.users = dict(USERS if users is None else users)
        self.calls: List[Any] = []
        self.closed = False

    async def authenticate(self, token):
        self.calls.append(token)
        if not isinstance(token, str) or not token:
            raise MissingTokenError()
        if token == "provider-down":
            raise IdentityProviderError("connection refused")
        identity = self.users.get(token)
        if identity is None:
            raise InvalidTokenError()
        return identity

    async def resolve(self, token):
        try:
            return await self.authenticate(token)
        except Exception:
            return None

    async def aclose(self):
        self.closed = True


class FakeRecords:
    def __init__(self):
        self.builds: Dict[str, Dict[str, Any]] = {}
        self.submissions: Dict[str, Dict[str, Any]] = {}
        self.fail = False

    async def find_build(self, eas_build_id: str):
        if self.fail:
            raise RuntimeError("database unavailable")
        return self.builds.get(eas_build_id)

    async def find_submission(self, submission_id: str):
        if self.fail:
            raise RuntimeError("database unavailable")
        return self.submissions.get(submission_id)


# ═══════════════════════════════════════════════════════
# FIXTURES - Relay
# ═══════════════════════════════════════════════════════

@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def relay(registry, resolver):
    return RelayServer(registry, resolver)


@pytest.fixture
def monitor(relay):
    return LivenessMonitor(relay, interval=0.01)


@pytest.fixture
def make_socket():
    """Factory for fake transports."""
    def _make(**kwargs) -> FakeWebSocket:
        return FakeWebSocket(**kwargs)
    return _make


# ═══════════════════════════════════════════════════════
# FIXTURES - Application
# ═══════════════════════════════════════════════════════

@pytest.fixture
def records():
    return FakeRecords()


@pytest.fixture
def settings():
    s = Settings()
    s.webhooks.eas_secret = None
    s.realtime.path = "/ws"
    s.realtime.heartbeat_interval = 30
    s.rate_limit = "1000/minute"
    return s


@pytest.fixture
def app(settings, resolver, records):
    return create_app(settings=settings, resolver=resolver, records=records)


@pytest.fixture
def client(app):
    """TestClient with lifespan running (liveness monitor started)."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
async def async_client(app):
    """Async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
