"""
Presence Tests

Redis is replaced by an AsyncMock; only the commands issued and the
interpretation of the stored hash are under test.
"""

import time
from unittest.mock import AsyncMock

import pytest

from app.services.presence import RedisPresence, presence_key


@pytest.fixture
def redis():
    client = AsyncMock()
    client.hgetall.return_value = {}
    return client


async def test_mark_online_writes_hash_with_ttl(redis):
    presence = RedisPresence(redis, ttl_seconds=600)

    await presence.mark_online("alice")

    key, = redis.hset.await_args.args
    mapping = redis.hset.await_args.kwargs["mapping"]
    assert key == presence_key("alice") == "presence:alice"
    assert mapping["status"] == "online"
    assert abs(int(mapping["last_seen"]) - time.time()) < 5
    redis.expire.assert_awaited_once_with("presence:alice", 600)


async def test_mark_recently(redis):
    await RedisPresence(redis, ttl_seconds=60).mark_recently("alice")
    assert redis.hset.await_args.kwargs["mapping"]["status"] == "recently"


async def test_active_when_online_and_recent(redis):
    redis.hgetall.return_value = {"status": "online", "last_seen": str(int(time.time()) - 30)}
    assert await RedisPresence(redis).is_user_active_within_last_minutes("alice", 5) is True


async def test_inactive_when_last_seen_too_old(redis):
    redis.hgetall.return_value = {"status": "online", "last_seen": str(int(time.time()) - 10 * 60)}
    assert await RedisPresence(redis).is_user_active_within_last_minutes("alice", 5) is False


async def test_inactive_when_disconnected(redis):
    redis.hgetall.return_value = {"status": "recently", "last_seen": str(int(time.time()))}
    assert await RedisPresence(redis).is_user_active_within_last_minutes("alice", 5) is False


async def test_inactive_without_record(redis):
    presence = RedisPresence(redis)
    assert await presence.get_status("alice") is None
    assert await presence.is_user_active_within_last_minutes("alice", 5) is False


async def test_unreadable_record_is_inactive(redis):
    redis.hgetall.return_value = {"status": "online", "last_seen": "yesterday"}
    assert await RedisPresence(redis).is_user_active_within_last_minutes("alice", 5) is False
