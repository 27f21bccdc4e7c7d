"""
Dependency Injection

FastAPI dependencies for routes. Concrete collaborators of the messaging
core (broadcaster, block oracle, notification sink, presence, push) are
assembled here so tests can swap any of them via dependency_overrides.
"""

from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.errors import AuthenticationError
from app.core.security import verify_token
from app.infra.db import get_db, get_session_factory
from app.infra.redis import get_redis_client
from app.realtime.manager import ConnectionManager, manager
from app.services.conversation_service import ConversationService
from app.services.interfaces import NotificationSink, PushProvider
from app.services.message_service import MessageService
from app.services.notification_service import NotificationDispatcher, NotificationService
from app.services.presence import RedisPresence
from app.services.push import build_push_provider
from app.services.relationship import BlockOracle
from app.services.tasks import TaskSpawner, spawner

bearer_scheme = HTTPBearer(auto_error=False)

# Type aliases for common dependencies
SessionDep = Annotated[AsyncSession, Depends(get_db)]


async def get_current_user_id(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> str:
    """
    Validate token and return current user ID.
    Does not fetch full user object to save DB call.
    """
    if credentials is None:
        raise AuthenticationError("Missing bearer token")
    user_id = verify_token(credentials.credentials)
    if not user_id:
        raise AuthenticationError("Could not validate credentials")
    return user_id


CurrentUserDep = Annotated[str, Depends(get_current_user_id)]


def get_gateway() -> ConnectionManager:
    return manager


def get_spawner() -> TaskSpawner:
    return spawner


async def get_presence() -> RedisPresence:
    return RedisPresence(await get_redis_client())


@lru_cache()
def get_push_provider() -> PushProvider:
    return build_push_provider()


GatewayDep = Annotated[ConnectionManager, Depends(get_gateway)]
SpawnerDep = Annotated[TaskSpawner, Depends(get_spawner)]
PresenceDep = Annotated[RedisPresence, Depends(get_presence)]
PushDep = Annotated[PushProvider, Depends(get_push_provider)]
SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


def get_notification_sink(
    session_factory: SessionFactoryDep,
    gateway: GatewayDep,
    presence: PresenceDep,
    push: PushDep,
) -> NotificationSink:
    return NotificationDispatcher(session_factory, gateway, presence, push)


NotificationSinkDep = Annotated[NotificationSink, Depends(get_notification_sink)]


def get_conversation_service(session: SessionDep) -> ConversationService:
    return ConversationService(session, BlockOracle(session))


def get_message_service(
    session: SessionDep,
    gateway: GatewayDep,
    notifications: NotificationSinkDep,
    spawner: SpawnerDep,
) -> MessageService:
    return MessageService(session, BlockOracle(session), gateway, notifications, spawner)


def get_notification_service(
    session: SessionDep,
    gateway: GatewayDep,
    presence: PresenceDep,
    push: PushDep,
) -> NotificationService:
    return NotificationService(session, gateway, presence, push)


ConversationServiceDep = Annotated[ConversationService, Depends(get_conversation_service)]
MessageServiceDep = Annotated[MessageService, Depends(get_message_service)]
NotificationServiceDep = Annotated[NotificationService, Depends(get_notification_service)]


def clamp_limit(limit: int) -> int:
    return max(1, min(limit, settings.max_page_size))


def page_params(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size),
) -> tuple[int, int]:
    """limit is clamped rather than rejected"""
    return page, clamp_limit(limit)


def message_page_params(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_message_page_size),
) -> tuple[int, int]:
    return page, clamp_limit(limit)


PageDep = Annotated[tuple[int, int], Depends(page_params)]
MessagePageDep = Annotated[tuple[int, int], Depends(message_page_params)]
