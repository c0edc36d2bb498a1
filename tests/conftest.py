"""
Shared fixtures.

Everything runs against ``InMemoryDocumentStore``. Websocket peers are
replaced by ``RecordingTransport``, which keeps every frame a session was
sent and the code it was closed with.

Usage:
    async def test_example(presence, alice, connect):
        session, transport = await connect(alice.id)
        assert transport.events("session_replaced") == []
"""

import os
import time
from types import SimpleNamespace

# must be set before siro.main builds its module-level app
os.environ["DOCUMENT_STORE"] = "memory"
os.environ["PUBLIC_SUPABASE_URL"] = "https://siro-test.supabase.co"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret-with-at-least-32-bytes!"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import jwt
import pytest
from fastapi.testclient import TestClient

from siro.chat.store import ConversationStore
from siro.core.config import Settings
from siro.core.documents import InMemoryDocumentStore
from siro.friendship.ledger import FriendRequestLedger
from siro.main import create_app
from siro.realtime.presence import PresenceCore, Session, TransportClosed
from siro.realtime.router import EventRouter
from siro.users.directory import UserDirectory


class RecordingTransport:
    def __init__(self):
        self.frames = []
        self.closed_with = None
        self.broken = False

    async def send(self, payload: dict):
        if self.broken:
            raise TransportClosed("peer gone")
        self.frames.append(payload)

    async def close(self, code: int):
        self.closed_with = code

    def events(self, name=None):
        return [frame for frame in self.frames if name is None or frame["event"] == name]

    def last(self, name):
        matching = self.events(name)
        return matching[-1] if matching else None

    def session(self) -> Session:
        return Session(self.send, self.close)


# =============================================================================
# Core services
# =============================================================================


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def directory(store):
    return UserDirectory(store)


@pytest.fixture
def conversations(store, directory):
    return ConversationStore(store, directory)


@pytest.fixture
def ledger(store, directory, conversations):
    return FriendRequestLedger(store, directory, conversations)


@pytest.fixture
def presence(directory, conversations):
    return PresenceCore(directory, conversations)


@pytest.fixture
def events(presence, directory, ledger, conversations):
    return EventRouter(presence, directory, ledger, conversations)


@pytest.fixture
def transport():
    return RecordingTransport()


# =============================================================================
# Users
# =============================================================================


@pytest.fixture
async def alice(directory):
    return await directory.create("u-alice", "alice", email="alice@example.com")


@pytest.fixture
async def bob(directory):
    return await directory.create("u-bob", "bob", email="bob@example.com")


@pytest.fixture
async def carol(directory):
    return await directory.create("u-carol", "carol", email="carol@example.com")


@pytest.fixture
def befriend(ledger):
    """Make two users friends through the normal request/accept path."""

    async def _befriend(sender_id: str, recipient_id: str):
        friend_request = await ledger.request(sender_id, recipient_id)
        return await ledger.accept(friend_request.id, recipient_id)

    return _befriend


@pytest.fixture
def connect(presence):
    """Bind a fresh recording session for a user."""

    async def _connect(user_id: str):
        transport = RecordingTransport()
        session = transport.session()
        await presence.bind(user_id, session)
        return session, transport

    return _connect


# =============================================================================
# HTTP / websocket app
# =============================================================================


class FakeSupabaseAuth:
    """Stands in for ``supabase.auth``; users are keyed by email."""

    def __init__(self):
        self.users = {}

    def sign_up(self, credentials: dict):
        email = credentials["email"]
        user = SimpleNamespace(id=f"id-{email.split('@')[0]}", email=email)
        self.users[email] = (user, credentials["password"])
        return SimpleNamespace(user=user, session=None)

    def sign_in_with_password(self, credentials: dict):
        user, _ = self.users[credentials["email"]]
        session = SimpleNamespace(
            access_token=f"access-{user.id}",
            refresh_token=f"refresh-{user.id}",
            expires_in=3600,
        )
        return SimpleNamespace(user=user, session=session)

    def refresh_session(self, refresh_token: str):
        user_id = refresh_token.removeprefix("refresh-")
        session = SimpleNamespace(
            access_token=f"access-{user_id}-2",
            refresh_token=f"refresh-{user_id}",
            expires_in=3600,
        )
        return SimpleNamespace(user=None, session=session)


@pytest.fixture
def settings():
    return Settings(
        supabase_url=os.environ["PUBLIC_SUPABASE_URL"],
        jwt_secret=os.environ["SUPABASE_JWT_SECRET"],
        document_store="memory",
        log_level="WARNING",
    )


@pytest.fixture
def fake_supabase(monkeypatch):
    client = SimpleNamespace(auth=FakeSupabaseAuth())
    monkeypatch.setattr("siro.auth.routers.get_supabase", lambda settings=None: client)
    return client


@pytest.fixture
def client(settings, fake_supabase):
    app = create_app(settings=settings, store=InMemoryDocumentStore())
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def token_for(settings):
    def _token_for(user_id: str, expires_in: int = 3600) -> str:
        now = int(time.time())
        claims = {
            "sub": user_id,
            "iss": settings.jwt_issuer,
            "aud": "authenticated",
            "iat": now,
            "exp": now + expires_in,
        }
        return jwt.encode(claims, settings.jwt_secret, algorithm="HS256")

    return _token_for


@pytest.fixture
def register(client, token_for):
    """Register through the API. Returns (user_id, auth headers)."""

    def _register(username: str):
        response = client.post(
            "/auth/register",
            json={
                "email": f"{username}@example.com",
                "username": username,
                "password": "hunter2hunter",
            },
        )
        assert response.status_code == 201, response.text
        user_id = response.json()["id"]
        return user_id, {"Authorization": f"Bearer {token_for(user_id)}"}

    return _register
