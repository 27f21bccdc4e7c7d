"""
Presence

Online / recently-seen state per user, kept in Redis so every API node
sees the same answer. Transitions are driven by socket connection
lifecycle in the realtime gateway.
"""

import time
from typing import Optional

from redis.asyncio import Redis

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

STATUS_ONLINE = "online"
STATUS_RECENTLY = "recently"


def presence_key(user_id: str) -> str:
    return f"presence:{user_id}"


class RedisPresence:
    def __init__(self, redis: Redis, ttl_seconds: Optional[int] = None):
        self.redis = redis
        self.ttl_seconds = ttl_seconds or settings.presence_ttl_seconds

    async def _write(self, user_id: str, status: str) -> None:
        key = presence_key(user_id)
        await self.redis.hset(key, mapping={"status": status, "last_seen": str(int(time.time()))})
        await self.redis.expire(key, self.ttl_seconds)

    async def mark_online(self, user_id: str) -> None:
        await self._write(user_id, STATUS_ONLINE)

    async def touch(self, user_id: str) -> None:
        """Refresh last_seen for an already connected user"""
        await self._write(user_id, STATUS_ONLINE)

    async def mark_recently(self, user_id: str) -> None:
        await self._write(user_id, STATUS_RECENTLY)

    async def get_status(self, user_id: str) -> Optional[dict]:
        data = await self.redis.hgetall(presence_key(user_id))
        return data or None

    async def is_user_active_within_last_minutes(self, user_id: str, minutes: int) -> bool:
        data = await self.get_status(user_id)
        if not data or data.get("status") != STATUS_ONLINE:
            return False
        try:
            last_seen = int(data.get("last_seen", 0))
        except (TypeError, ValueError):
            logger.warning(f"Unreadable presence record for user {user_id}: {data!r}")
            return False
        return time.time() - last_seen <= minutes * 60
