"""
Test configuration and shared fixtures for the nyelvszo test suite.

Environment defaults are set before any nyelvszo module is imported so that
configuration models can be instantiated without a .env file.
"""

import json
import os

os.environ.setdefault("NYELVSZO_JWT_SECRET", "test-jwt-secret-key-for-testing-only")
os.environ.setdefault("LOGGING_ENVIRONMENT", "unit_test")
os.environ.setdefault("SERVER_HOST", "127.0.0.1")
os.environ.setdefault("SERVER_PORT", "54731")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from datetime import timedelta  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from nyelvszo.auth.roles import Role  # noqa: E402
from nyelvszo.auth.tokens import TokenVerifier, create_access_token  # noqa: E402
from nyelvszo.database import DatabaseManager  # noqa: E402
from nyelvszo.events.event_store import EventStore  # noqa: E402
from nyelvszo.exceptions import TransportError  # noqa: E402
from nyelvszo.realtime.hub import RealtimeHub  # noqa: E402

TEST_JWT_SECRET = os.environ["NYELVSZO_JWT_SECRET"]


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """In-memory transport recording every frame written to it."""

    def __init__(self) -> None:
        self.open = True
        self.fail_sends = False
        self.sent: list[dict[str, Any]] = []
        self.closed_with: tuple[int, str] | None = None

    @property
    def is_open(self) -> bool:
        return self.open

    async def send_json(self, frame: dict[str, Any]) -> None:
        if self.fail_sends:
            raise TransportError("socket write failed")
        self.sent.append(frame)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed_with = (code, reason)
        self.open = False

    def frames(self, frame_type: str) -> list[dict[str, Any]]:
        return [frame for frame in self.sent if frame["type"] == frame_type]

    def types(self) -> list[str]:
        return [frame["type"] for frame in self.sent]

    @property
    def last(self) -> dict[str, Any]:
        return self.sent[-1]


@pytest.fixture
def clock():
    """A fake clock starting at a fixed time."""
    return FakeClock()


@pytest.fixture
def transport_factory():
    """Factory for fake transports."""
    return FakeTransport


@pytest.fixture
def verifier():
    """Token verifier using the test secret."""
    return TokenVerifier(TEST_JWT_SECRET)


@pytest.fixture
def make_token():
    """Build signed bearer tokens for a user and role."""

    def _make_token(
        user_id: str = "user-1",
        role: Role | int | str = Role.USER,
        email: str | None = None,
        expires_delta: timedelta | None = None,
        secret: str = TEST_JWT_SECRET,
    ) -> str:
        claims: dict[str, Any] = {
            "userId": user_id,
            "email": email or f"{user_id}@example.com",
            "role": int(role) if isinstance(role, Role) else role,
        }
        return create_access_token(claims, secret, expires_delta=expires_delta)

    return _make_token


@pytest.fixture
def hub(verifier, clock):
    """A hub without an event store."""
    return RealtimeHub(verifier, clock=clock)


@pytest_asyncio.fixture
async def database(tmp_path):
    """A file-backed SQLite event store database."""
    manager = DatabaseManager(f"sqlite+aiosqlite:///{tmp_path / 'events.db'}")
    await manager.init_schema()
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def event_store(database):
    """An event store on the test database."""
    return EventStore(database)


@pytest_asyncio.fixture
async def collab_hub(verifier, clock, event_store):
    """A hub wired to the event store."""
    return RealtimeHub(verifier, event_store=event_store, clock=clock)


@pytest.fixture
def open_session(make_token):
    """Connect a fake transport to a hub, optionally authenticating it."""

    async def _open_session(
        target_hub: RealtimeHub,
        user_id: str | None = None,
        role: Role = Role.USER,
    ) -> tuple[str, FakeTransport]:
        transport = FakeTransport()
        connection_id = await target_hub.connect(transport)
        if user_id is not None:
            frame = {"type": "auth", "payload": {"token": make_token(user_id, role)}}
            await target_hub.handle_frame(connection_id, json.dumps(frame))
        return connection_id, transport

    return _open_session


@pytest.fixture
def encode():
    """Encode an inbound frame from a type and payload keywords."""

    def _encode(frame_type: str, **payload: Any) -> str:
        return json.dumps({"type": frame_type, "payload": payload})

    return _encode
