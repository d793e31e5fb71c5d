"""Shared fakes and fixtures.

The protocol client is replaced by in-memory fakes that record what the
gateway asked of them and let tests push connection events by hand.
"""

import asyncio
from pathlib import Path
from typing import Any, Optional

import pytest

from src.wa_gateway.whatsapp.protocol import EventCallback, UserIdentity
from src.wa_gateway.whatsapp.registry import SessionRegistry
from src.wa_gateway.whatsapp.supervisor import ConnectionSupervisor


class FakeAuthState:
    def __init__(self, path: Path, journal: list) -> None:
        self.path = path
        self.saved: list[Any] = []
        self._journal = journal

    async def save_credentials(self, credentials: Any) -> None:
        self.saved.append(credentials)
        self._journal.append(("save_credentials", credentials))


class FakeConnection:
    def __init__(self, on_event: Optional[EventCallback] = None) -> None:
        self.on_event = on_event
        self.user: Optional[UserIdentity] = None
        self.sent: list[tuple[str, str]] = []
        self.send_error: Optional[Exception] = None
        self.logout_error: Optional[Exception] = None
        self.logged_out = False
        self.closed = False

    def emit(self, event: Any) -> None:
        self.on_event(event)

    async def send_text(self, jid: str, text: str) -> dict:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((jid, text))
        return {"id": f"msg-{len(self.sent)}"}

    async def logout(self) -> None:
        if self.logout_error is not None:
            raise self.logout_error
        self.logged_out = True

    async def close(self) -> None:
        self.closed = True


class FakeProvider:
    def __init__(self) -> None:
        self.connections: list[FakeConnection] = []
        self.auth_states: list[FakeAuthState] = []
        self.journal: list[tuple[str, Any]] = []
        self.open_error: Optional[Exception] = None
        self.browsers: list[tuple[str, str, str]] = []

    async def load_auth_state(self, path: Path) -> FakeAuthState:
        await asyncio.sleep(0)
        auth_state = FakeAuthState(path, self.journal)
        self.auth_states.append(auth_state)
        return auth_state

    async def open_connection(self, auth_state, on_event, browser) -> FakeConnection:
        if self.open_error is not None:
            raise self.open_error
        connection = FakeConnection(on_event)
        self.connections.append(connection)
        self.browsers.append(browser)
        return connection

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]


class RecordingRelay:
    def __init__(self, journal: Optional[list] = None, delay: float = 0) -> None:
        self.calls: list[dict[str, Any]] = []
        self._journal = journal
        self.delay = delay

    async def notify(self, event, session_id, instance_name, data, *, secret="") -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        call = {
            "event": event,
            "sessionId": session_id,
            "instanceName": instance_name,
            "data": data,
            "secret": secret,
        }
        self.calls.append(call)
        if self._journal is not None:
            self._journal.append(("notify", event))

    def events(self) -> list[str]:
        return [call["event"] for call in self.calls]


def fake_qr(code: str) -> str:
    return f"data:image/png;base64,{code}"


@pytest.fixture
def sessions_dir(tmp_path: Path) -> Path:
    path = tmp_path / "sessions"
    path.mkdir()
    return path


@pytest.fixture
def registry(sessions_dir: Path) -> SessionRegistry:
    return SessionRegistry(sessions_dir)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def relay(provider: FakeProvider) -> RecordingRelay:
    return RecordingRelay(provider.journal)


@pytest.fixture
def supervisor(registry, relay, provider) -> ConnectionSupervisor:
    return ConnectionSupervisor(
        registry,
        relay,
        provider,
        reconnect_delay=0.01,
        render_qr=fake_qr,
    )


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def app(supervisor):
    from src.wa_gateway.main import create_app

    return create_app(supervisor=supervisor)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def slow_relay(provider: FakeProvider) -> RecordingRelay:
    return RecordingRelay(provider.journal, delay=0.3)


@pytest.fixture
def slow_supervisor(registry, slow_relay, provider) -> ConnectionSupervisor:
    return ConnectionSupervisor(
        registry,
        slow_relay,
        provider,
        reconnect_delay=0.01,
        render_qr=fake_qr,
    )
