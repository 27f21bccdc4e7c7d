"""
Realtime Gateway - WebSocket connection and room management

Features:
- Per-user rooms ("user:<id>") for account-wide events
- Per-conversation rooms ("conversation:<id>") joined on demand
- Multiple concurrent connections per user
- Presence announcements to every connected socket
- Race condition protection (asyncio.Lock)

Delivery is at-most-once to currently connected sockets. Nothing is
replayed; reconnecting clients re-fetch over REST and re-join rooms.
"""

import asyncio
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

from app.core.logging import get_logger
from app.core.time import utcnow

logger = get_logger(__name__)

EVENT_MESSAGE_NEW = "message:new"
EVENT_MESSAGE_REACTION = "message:reaction"
EVENT_CONVERSATIONS_UPDATED = "conversations:updated"
EVENT_USER_ONLINE = "user:online"
EVENT_USER_OFFLINE = "user:offline"
EVENT_ONLINE_LIST = "users:online:list"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def conversation_room(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def frame(event: str, data: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    return {"event": event, "data": data or {}}


class ConnectionManager:
    """
    Room registry plus the Broadcaster the messaging core talks to.
    Room membership lives only as long as the connection.
    """

    def __init__(self):
        # room -> sockets
        self.rooms: Dict[str, Set[WebSocket]] = {}
        # socket -> (user_id, joined rooms)
        self.connection_user: Dict[WebSocket, str] = {}
        self.connection_rooms: Dict[WebSocket, Set[str]] = {}
        # user_id -> number of live sockets
        self.user_connections: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def connect(self, user_id: str, websocket: WebSocket) -> bool:
        """
        Register an accepted socket and put it in the user's room.
        Returns True when this is the user's first live connection.
        """
        room = user_room(user_id)
        async with self._lock:
            self.connection_user[websocket] = user_id
            self.connection_rooms[websocket] = {room}
            self.rooms.setdefault(room, set()).add(websocket)
            count = self.user_connections.get(user_id, 0) + 1
            self.user_connections[user_id] = count
        logger.info(f"User {user_id} connected. Total connections: {count}")
        return count == 1

    async def disconnect(self, websocket: WebSocket) -> bool:
        """
        Drop the socket from every room.
        Returns True when the user has no live connection left.
        """
        async with self._lock:
            user_id = self.connection_user.pop(websocket, None)
            for room in self.connection_rooms.pop(websocket, set()):
                members = self.rooms.get(room)
                if members is None:
                    continue
                members.discard(websocket)
                if not members:
                    del self.rooms[room]
            if user_id is None:
                return False
            remaining = self.user_connections.get(user_id, 1) - 1
            if remaining > 0:
                self.user_connections[user_id] = remaining
            else:
                self.user_connections.pop(user_id, None)
        logger.info(f"User {user_id} disconnected. Remaining connections: {max(remaining, 0)}")
        return remaining <= 0

    async def join(self, websocket: WebSocket, room: str) -> None:
        async with self._lock:
            if websocket not in self.connection_user:
                return
            self.rooms.setdefault(room, set()).add(websocket)
            self.connection_rooms[websocket].add(room)

    async def leave(self, websocket: WebSocket, room: str) -> None:
        """Idempotent"""
        async with self._lock:
            members = self.rooms.get(room)
            if members is not None:
                members.discard(websocket)
                if not members:
                    del self.rooms[room]
            joined = self.connection_rooms.get(websocket)
            if joined is not None:
                joined.discard(room)

    def room_size(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    def online_user_ids(self) -> List[str]:
        return sorted(self.user_connections)

    def is_connected(self, user_id: str) -> bool:
        return user_id in self.user_connections

    async def send(self, websocket: WebSocket, event: str, data: Optional[dict[str, Any]] = None) -> bool:
        return await self._safe_send(websocket, frame(event, data))

    async def emit_to_room(
        self,
        room: str,
        event: str,
        data: dict[str, Any],
        exclude: Optional[WebSocket] = None,
    ) -> int:
        """Returns how many sockets accepted the frame"""
        async with self._lock:
            # Copy so sends happen outside the lock
            connections = [ws for ws in self.rooms.get(room, ()) if ws is not exclude]
        return await self._fan_out(connections, event, data)

    async def emit_to_all(self, event: str, data: dict[str, Any], exclude: Optional[WebSocket] = None) -> int:
        """Every live socket of every user"""
        async with self._lock:
            connections = [ws for ws in self.connection_user if ws is not exclude]
        return await self._fan_out(connections, event, data)

    async def _fan_out(self, connections: List[WebSocket], event: str, data: dict[str, Any]) -> int:
        if not connections:
            return 0

        message = frame(event, data)
        results = await asyncio.gather(
            *(self._safe_send(connection, message) for connection in connections),
            return_exceptions=True,
        )
        return sum(1 for result in results if result is True)

    async def _safe_send(self, websocket: WebSocket, message: dict) -> bool:
        """Send message with error handling"""
        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            logger.error(f"Error sending '{message.get('event')}' frame: {e}")
            return False

    # Broadcaster ---------------------------------------------------------

    async def emit_new_message(self, conversation_id: str, message: dict[str, Any], sender_id: str) -> None:
        await self.emit_to_room(
            conversation_room(conversation_id),
            EVENT_MESSAGE_NEW,
            {"conversationId": conversation_id, "senderId": sender_id, "message": message},
        )

    async def emit_reaction_delta(self, conversation_id: str, payload: dict[str, Any]) -> None:
        await self.emit_to_room(conversation_room(conversation_id), EVENT_MESSAGE_REACTION, payload)

    async def emit_conversation_list_changed(self, user_id: str) -> None:
        await self.emit_to_room(user_room(user_id), EVENT_CONVERSATIONS_UPDATED, {"userId": user_id})

    async def emit_to_user(self, user_id: str, event: str, data: dict[str, Any]) -> None:
        await self.emit_to_room(user_room(user_id), event, data)

    # Presence ------------------------------------------------------------

    async def send_online_list(self, websocket: WebSocket) -> None:
        user_ids = self.online_user_ids()
        await self.send(websocket, EVENT_ONLINE_LIST, {"userIds": user_ids, "total": len(user_ids)})

    async def announce_online(self, user_id: str, websocket: WebSocket) -> None:
        await self.emit_to_all(
            EVENT_USER_ONLINE, {"userId": user_id, "timestamp": utcnow().isoformat()}, exclude=websocket
        )

    async def announce_offline(self, user_id: str) -> None:
        await self.emit_to_all(EVENT_USER_OFFLINE, {"userId": user_id, "timestamp": utcnow().isoformat()})


# Global connection manager instance
manager = ConnectionManager()
