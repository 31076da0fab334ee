"""
Pulse Backend — Test Configuration (conftest.py)
=================================================

What:  Shared pytest fixtures for the realtime chat test suite.
Why:   Tests run without Postgres or a real WebSocket client: transports are
       recorded in memory and the message store is either faked or backed by
       an in-memory SQLite database (aiosqlite).
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped:
    ├── resolver: IdentityResolver (JWT secret + dev userId accepted)
    ├── store: FakeStore (server ids from 501, can fail or hold a sender in flight)
    ├── hub: RealtimeHub wired on the fake store
    ├── session_factory: async_sessionmaker on a fresh in-memory SQLite DB
    └── app / client: FastAPI app + HTTPX AsyncClient (ASGITransport)
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

# Override settings BEFORE any app import (no Postgres, no .env surprises)
os.environ["ENV"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-secret"
os.environ["ALLOW_INSECURE_USER_ID"] = "true"
os.environ["PRESENCE_BROADCAST"] = "false"

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.errors import PersistenceFailure
from app.core.security import IdentityResolver
from app.db.base import Base
from app.realtime import create_hub
from app.realtime.events import ChatMessage

SECRET = "test-secret"
CREATED_AT = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


# ══════════════════════════════════════════════════════════════════════════
# Test doubles
# ══════════════════════════════════════════════════════════════════════════


class FakeTransport:
    """Records every JSON frame pushed to it; can simulate a dead socket."""

    def __init__(self, name: str = "t", fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.sent: List[dict] = []
        self.closed_with: Optional[int] = None

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError(f"{self.name} is closed")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code

    def events(self, name: str) -> List[dict]:
        return [f["data"] for f in self.sent if f.get("event") == name]


class FakeStore:
    """In-memory persistence collaborator: server ids start at 501."""

    def __init__(self) -> None:
        self.calls: List[dict] = []
        self.next_id = 501
        self.error: Optional[BaseException] = None
        self.gates: Dict[Any, asyncio.Event] = {}

    async def save(self, *, sender_id, receiver_id, content, conversation_id=None) -> ChatMessage:
        self.calls.append(
            {
                "sender_id": sender_id,
                "receiver_id": receiver_id,
                "content": content,
                "conversation_id": conversation_id,
            }
        )
        gate = self.gates.get(sender_id)
        if gate is not None:
            await gate.wait()
        if self.error is not None:
            raise self.error

        message = ChatMessage(
            id=self.next_id,
            conversation_id=conversation_id or 1,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            created_at=CREATED_AT,
        )
        self.next_id += 1
        return message

    def hold(self, sender_id: Any) -> asyncio.Event:
        """Keeps save() in flight for this sender until the returned event is set."""
        gate = asyncio.Event()
        self.gates[sender_id] = gate
        return gate

    def fail_with_storage_error(self) -> None:
        self.error = PersistenceFailure("storage unavailable")


def make_token(user_id: Any, *, secret: str = SECRET, expires_in: int = 3600, claim: str = "id") -> str:
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {claim: user_id, "iat": now, "exp": now + timedelta(seconds=expires_in)},
        secret,
        algorithm="HS256",
    )


# ══════════════════════════════════════════════════════════════════════════
# Fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def resolver():
    return IdentityResolver(SECRET, allow_insecure_user_id=True)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def hub(store, resolver):
    return create_hub(store, resolver)


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory SQLite database with the chat schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def app(store, resolver):
    from app.main import create_app

    return create_app(store=store, identity_resolver=resolver)


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
