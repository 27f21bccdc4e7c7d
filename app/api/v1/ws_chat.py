"""
Chat WebSocket endpoint

Frames in both directions are JSON objects: {"event": <name>, "data": {...}}

Client events:
- conversation:join   {"conversationId"}  join the room, reset unread
- conversation:leave  {"conversationId"}  leave the room (idempotent)
- ping                                    answered with "pong"

On connect the caller gets "auth:connected" and "users:online:list";
everyone else hears "user:online" for a first connection and
"user:offline" once the last connection of a user closes.
"""

import json
from typing import Any, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from app.core.deps import (
    GatewayDep,
    NotificationSinkDep,
    PresenceDep,
    SessionFactoryDep,
    SpawnerDep,
)
from app.core.errors import AppError
from app.core.logging import get_logger
from app.core.security import verify_token
from app.realtime.manager import ConnectionManager, conversation_room
from app.services.message_service import MessageService
from app.services.relationship import BlockOracle

logger = get_logger(__name__)

router = APIRouter()

EVENT_JOIN = "conversation:join"
EVENT_LEAVE = "conversation:leave"
EVENT_PING = "ping"


def extract_token(websocket: WebSocket, token: Optional[str]) -> Optional[str]:
    """Query parameter first, then an Authorization: Bearer header"""
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    scheme, _, credential = header.partition(" ")
    if scheme.lower() == "bearer" and credential:
        return credential.strip()
    return None


async def send_error(gateway: ConnectionManager, websocket: WebSocket, code: str, message: str) -> None:
    await gateway.send(websocket, "error", {"code": code, "message": message})


class ChatSocketHandler:
    """Dispatches inbound frames for one authenticated connection"""

    def __init__(
        self,
        websocket: WebSocket,
        user_id: str,
        gateway: ConnectionManager,
        session_factory,
        notifications,
        spawner,
    ):
        self.websocket = websocket
        self.user_id = user_id
        self.gateway = gateway
        self.session_factory = session_factory
        self.notifications = notifications
        self.spawner = spawner

    async def handle(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            await send_error(self.gateway, self.websocket, "INVALID_FRAME", "Frame is not valid JSON")
            return
        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            await send_error(self.gateway, self.websocket, "INVALID_FRAME", "Frame must carry an event name")
            return

        event = message["event"]
        data = message.get("data") if isinstance(message.get("data"), dict) else {}

        if event == EVENT_PING:
            await self.gateway.send(self.websocket, "pong", {})
        elif event == EVENT_JOIN:
            await self.join(data)
        elif event == EVENT_LEAVE:
            await self.leave(data)
        else:
            await send_error(self.gateway, self.websocket, "UNKNOWN_EVENT", f"Unknown event '{event}'")

    def _conversation_id(self, data: dict[str, Any]) -> Optional[str]:
        value = data.get("conversationId")
        return value if isinstance(value, str) and value else None

    async def join(self, data: dict[str, Any]) -> None:
        conversation_id = self._conversation_id(data)
        if conversation_id is None:
            await send_error(self.gateway, self.websocket, "INVALID_PAYLOAD", "conversationId is required")
            return

        try:
            async with self.session_factory() as session:
                service = MessageService(
                    session,
                    BlockOracle(session),
                    self.gateway,
                    self.notifications,
                    self.spawner,
                )
                # Checks membership, resets unread and tells the user's other sockets
                await service.open_conversation(conversation_id, self.user_id)
        except AppError as e:
            await send_error(self.gateway, self.websocket, e.error_code, e.message)
            return

        await self.gateway.join(self.websocket, conversation_room(conversation_id))
        logger.debug(f"User {self.user_id} joined conversation {conversation_id}")

    async def leave(self, data: dict[str, Any]) -> None:
        conversation_id = self._conversation_id(data)
        if conversation_id is None:
            await send_error(self.gateway, self.websocket, "INVALID_PAYLOAD", "conversationId is required")
            return
        await self.gateway.leave(self.websocket, conversation_room(conversation_id))


@router.websocket("/chat")
async def chat_websocket(
    websocket: WebSocket,
    gateway: GatewayDep,
    presence: PresenceDep,
    session_factory: SessionFactoryDep,
    notifications: NotificationSinkDep,
    spawner: SpawnerDep,
    token: Optional[str] = Query(None),
):
    """
    WebSocket endpoint for realtime chat events
    """
    user_id = verify_token(extract_token(websocket, token) or "")
    if not user_id:
        logger.warning("Rejected WebSocket connection without a valid token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Authentication failed")
        return

    await websocket.accept()
    first = await gateway.connect(user_id, websocket)
    if first:
        try:
            await presence.mark_online(user_id)
        except Exception as e:
            logger.error(f"Presence update for {user_id} failed: {e}")
    await gateway.send(websocket, "auth:connected", {"userId": user_id})
    await gateway.send_online_list(websocket)
    if first:
        await gateway.announce_online(user_id, websocket)

    handler = ChatSocketHandler(websocket, user_id, gateway, session_factory, notifications, spawner)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                await presence.touch(user_id)
            except Exception as e:
                logger.error(f"Presence touch for {user_id} failed: {e}")
            await handler.handle(raw)
    except WebSocketDisconnect:
        pass
    finally:
        last = await gateway.disconnect(websocket)
        if last:
            try:
                await presence.mark_recently(user_id)
            except Exception as e:
                logger.error(f"Presence update for {user_id} failed: {e}")
            await gateway.announce_offline(user_id)
