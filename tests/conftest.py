"""
Conftest
"""

import os

# Settings are read at import time
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from typing import AsyncGenerator, Generator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core import deps
from app.core.security import create_access_token
from app.infra.db import get_db, get_session_factory
from app.main import app
from app.models.base import Base
from app.models.notification import PushToken
from app.models.user import User, UserBlock
from app.realtime.manager import ConnectionManager
from app.services.conversation_service import ConversationService
from app.services.interfaces import PushResult
from app.services.message_service import MessageService
from app.services.notification_service import NotificationDispatcher, NotificationService
from app.services.relationship import BlockOracle


# ----------------------------------------------------------------------
# Fakes
# ----------------------------------------------------------------------


class FakeBroadcaster:
    """Records every emit instead of writing to sockets"""

    def __init__(self):
        self.events: list[tuple] = []

    async def emit_new_message(self, conversation_id: str, message: dict, sender_id: str) -> None:
        self.events.append(("message:new", conversation_id, message, sender_id))

    async def emit_reaction_delta(self, conversation_id: str, payload: dict) -> None:
        self.events.append(("message:reaction", conversation_id, payload))

    async def emit_conversation_list_changed(self, user_id: str) -> None:
        self.events.append(("conversations:updated", user_id))

    async def emit_to_user(self, user_id: str, event: str, data: dict) -> None:
        self.events.append((event, user_id, data))

    def of(self, name: str) -> list[tuple]:
        return [e for e in self.events if e[0] == name]


class FakePresence:
    def __init__(self):
        self.active: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    async def mark_online(self, user_id: str) -> None:
        self.calls.append(("online", user_id))

    async def touch(self, user_id: str) -> None:
        self.calls.append(("touch", user_id))

    async def mark_recently(self, user_id: str) -> None:
        self.calls.append(("recently", user_id))

    async def is_user_active_within_last_minutes(self, user_id: str, minutes: int) -> bool:
        return user_id in self.active


class DeferredSpawner:
    """Runs spawned side effects only when drained, one after another"""

    def __init__(self):
        self.queued: list = []

    def spawn(self, coro, name: str) -> None:
        self.queued.append(coro)

    @property
    def pending(self) -> int:
        return len(self.queued)

    async def drain(self) -> None:
        while self.queued:
            await self.queued.pop(0)

    def discard(self) -> None:
        for coro in self.queued:
            coro.close()
        self.queued.clear()


class FakeCredentials:
    """Stands in for google.oauth2 service-account credentials"""

    def __init__(self, valid: bool = True):
        self.valid = valid
        self.refreshes = 0
        self.token = "access-token" if valid else None

    def refresh(self, request) -> None:
        self.refreshes += 1
        self.token = f"access-token-{self.refreshes}"
        self.valid = True


class FakePushProvider:
    def __init__(self):
        self.deliveries: list[dict] = []
        self.results: dict[str, PushResult] = {}

    async def deliver(self, token: str, platform: str, title: str, body: str, data: dict[str, str]) -> PushResult:
        self.deliveries.append({"token": token, "platform": platform, "title": title, "body": body, "data": data})
        return self.results.get(token, PushResult.OK)


# ----------------------------------------------------------------------
# Database
# ----------------------------------------------------------------------


@pytest.fixture
async def engine(tmp_path):
    # A file per test: every session gets its own connection, as in production
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ----------------------------------------------------------------------
# Collaborators and services
# ----------------------------------------------------------------------


@pytest.fixture
def broadcaster() -> FakeBroadcaster:
    return FakeBroadcaster()


@pytest.fixture
def presence() -> FakePresence:
    return FakePresence()


@pytest.fixture
def push() -> FakePushProvider:
    return FakePushProvider()


@pytest.fixture
def spawner() -> Generator[DeferredSpawner, None, None]:
    spawner = DeferredSpawner()
    yield spawner
    spawner.discard()


@pytest.fixture
def dispatcher(session_factory, broadcaster, presence, push) -> NotificationDispatcher:
    return NotificationDispatcher(session_factory, broadcaster, presence, push)


@pytest.fixture
def conversation_service(session) -> ConversationService:
    return ConversationService(session, BlockOracle(session))


@pytest.fixture
def message_service(session, broadcaster, dispatcher, spawner) -> MessageService:
    return MessageService(session, BlockOracle(session), broadcaster, dispatcher, spawner)


@pytest.fixture
def notification_service(session, broadcaster, presence, push) -> NotificationService:
    return NotificationService(session, broadcaster, presence, push)


# ----------------------------------------------------------------------
# Data helpers
# ----------------------------------------------------------------------


async def make_user(session: AsyncSession, user_id: str, display_name: Optional[str] = None) -> User:
    user = User(id=user_id, username=user_id, display_name=display_name or user_id.title())
    session.add(user)
    await session.commit()
    return user


async def block(session: AsyncSession, blocker_id: str, blocked_id: str) -> None:
    session.add(UserBlock(blocker_id=blocker_id, blocked_id=blocked_id))
    await session.commit()


async def add_push_token(session: AsyncSession, user_id: str, token: str, platform: str = "android") -> PushToken:
    push_token = PushToken(user_id=user_id, token=token, platform=platform, active=True)
    session.add(push_token)
    await session.commit()
    return push_token


@pytest.fixture
async def alice(session) -> User:
    return await make_user(session, "alice", "Alice")


@pytest.fixture
async def bob(session) -> User:
    return await make_user(session, "bob", "Bob")


@pytest.fixture
async def carol(session) -> User:
    return await make_user(session, "carol", "Carol")


# ----------------------------------------------------------------------
# HTTP
# ----------------------------------------------------------------------


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def gateway() -> ConnectionManager:
    return ConnectionManager()


@pytest.fixture
async def client(session_factory, gateway, presence, push) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[deps.get_gateway] = lambda: gateway
    app.dependency_overrides[deps.get_presence] = lambda: presence
    app.dependency_overrides[deps.get_push_provider] = lambda: push
    spawner = DeferredSpawner()
    app.dependency_overrides[deps.get_spawner] = lambda: spawner

    async def run_side_effects(response):
        # Side effects of a request run once its response is in, one after another
        await spawner.drain()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        event_hooks={"response": [run_side_effects]},
    ) as c:
        yield c

    app.dependency_overrides.clear()
