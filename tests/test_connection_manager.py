import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.realtime.manager import ConnectionManager, conversation_room, user_room


def make_socket(fail: bool = False) -> MagicMock:
    ws = MagicMock()
    ws.send_json = AsyncMock(side_effect=RuntimeError("closed") if fail else None)
    return ws


@pytest.mark.asyncio
async def test_connection_manager_concurrent_access():
    manager = ConnectionManager()

    # Mock websockets
    sockets = [make_socket() for _ in range(50)]

    await asyncio.gather(*(manager.connect("alice", ws) for ws in sockets))
    assert manager.user_connections["alice"] == 50
    assert manager.room_size(user_room("alice")) == 50

    results = await asyncio.gather(*(manager.disconnect(ws) for ws in sockets))
    # Exactly one disconnect is the last one
    assert results.count(True) == 1
    assert not manager.is_connected("alice")
    assert manager.rooms == {}


@pytest.mark.asyncio
async def test_first_and_last_connection_flags():
    manager = ConnectionManager()
    phone, laptop = make_socket(), make_socket()

    assert await manager.connect("alice", phone) is True
    assert await manager.connect("alice", laptop) is False
    assert manager.online_user_ids() == ["alice"]

    assert await manager.disconnect(phone) is False
    assert manager.is_connected("alice")
    assert await manager.disconnect(laptop) is True
    assert manager.online_user_ids() == []


@pytest.mark.asyncio
async def test_disconnect_unknown_socket():
    manager = ConnectionManager()
    assert await manager.disconnect(make_socket()) is False


@pytest.mark.asyncio
async def test_rooms_follow_joins_and_disconnect():
    manager = ConnectionManager()
    ws = make_socket()
    room = conversation_room("c1")

    await manager.connect("alice", ws)
    await manager.join(ws, room)
    await manager.join(ws, room)
    assert manager.room_size(room) == 1

    await manager.leave(ws, room)
    await manager.leave(ws, room)
    assert manager.room_size(room) == 0

    await manager.join(ws, room)
    await manager.disconnect(ws)
    assert manager.room_size(room) == 0
    assert manager.rooms == {}


@pytest.mark.asyncio
async def test_join_requires_registered_socket():
    manager = ConnectionManager()
    await manager.join(make_socket(), conversation_room("c1"))
    assert manager.room_size(conversation_room("c1")) == 0


@pytest.mark.asyncio
async def test_emit_to_room_skips_failures_and_excluded():
    manager = ConnectionManager()
    good, broken, sender = make_socket(), make_socket(fail=True), make_socket()
    room = conversation_room("c1")
    for user_id, ws in (("bob", good), ("carol", broken), ("alice", sender)):
        await manager.connect(user_id, ws)
        await manager.join(ws, room)

    delivered = await manager.emit_to_room(room, "message:new", {"x": 1}, exclude=sender)

    assert delivered == 1
    good.send_json.assert_awaited_once_with({"event": "message:new", "data": {"x": 1}})
    sender.send_json.assert_not_awaited()


@pytest.mark.asyncio
async def test_emit_to_empty_room():
    assert await ConnectionManager().emit_to_room("conversation:none", "x", {}) == 0


@pytest.mark.asyncio
async def test_broadcaster_events():
    manager = ConnectionManager()
    member, other = make_socket(), make_socket()
    await manager.connect("bob", member)
    await manager.connect("carol", other)
    await manager.join(member, conversation_room("c1"))

    await manager.emit_new_message("c1", {"id": 5}, "alice")
    member.send_json.assert_awaited_once_with(
        {"event": "message:new", "data": {"conversationId": "c1", "senderId": "alice", "message": {"id": 5}}}
    )
    other.send_json.assert_not_awaited()

    await manager.emit_reaction_delta("c1", {"messageId": 5, "reactions": []})
    assert member.send_json.await_args.args[0]["event"] == "message:reaction"

    await manager.emit_conversation_list_changed("carol")
    other.send_json.assert_awaited_once_with({"event": "conversations:updated", "data": {"userId": "carol"}})

    await manager.emit_to_user("bob", "notification:unread_count", {"count": 3})
    assert member.send_json.await_args.args[0] == {"event": "notification:unread_count", "data": {"count": 3}}


@pytest.mark.asyncio
async def test_presence_announcements_reach_every_user():
    manager = ConnectionManager()
    alice, bob, carol = make_socket(), make_socket(), make_socket()
    for user_id, ws in (("alice", alice), ("bob", bob), ("carol", carol)):
        await manager.connect(user_id, ws)

    await manager.send_online_list(alice)
    listing = alice.send_json.await_args.args[0]
    assert listing == {"event": "users:online:list", "data": {"userIds": ["alice", "bob", "carol"], "total": 3}}

    await manager.announce_online("alice", alice)
    assert alice.send_json.await_count == 1
    for ws in (bob, carol):
        frame = ws.send_json.await_args.args[0]
        assert frame["event"] == "user:online"
        assert frame["data"]["userId"] == "alice"
        assert frame["data"]["timestamp"]

    await manager.disconnect(alice)
    assert await manager.emit_to_all("noop", {}) == 2
    await manager.announce_offline("alice")
    assert bob.send_json.await_args.args[0]["event"] == "user:offline"
    assert carol.send_json.await_args.args[0]["data"]["userId"] == "alice"
