"""
Message Service Tests

Send/list semantics, unread bookkeeping, and the fan-out that follows a
stored message.
"""

import pytest
from sqlalchemy import select
from sqlalchemy.exc import NotSupportedError

from app.core.errors import BlockedError, InvalidPayloadError, NotAMemberError, NotFoundError
from app.crud.conversation import MemberCRUD
from app.models.conversation import Conversation, ConversationMember, ConversationType
from app.models.message import Message, MessageType, ReactionType
from app.models.notification import Notification
from app.schemas.message import SendMessageRequest
from app.services.message_service import build_preview
from app.services.unit_of_work import UnitOfWork
from conftest import add_push_token, block, make_user


def text(body: str, **extra) -> SendMessageRequest:
    return SendMessageRequest(type=MessageType.TEXT, text=body, **extra)


async def member_row(session_factory, conversation_id: str, user_id: str) -> ConversationMember:
    async with session_factory() as s:
        return await MemberCRUD.get(s, conversation_id, user_id)


async def conversation_row(session_factory, conversation_id: str) -> Conversation:
    async with session_factory() as s:
        return await s.get(Conversation, conversation_id)


@pytest.fixture
async def private_chat(conversation_service, alice, bob) -> str:
    view = await conversation_service.ensure_private_conversation("alice", "bob")
    return view.conversation.id


@pytest.fixture
async def group_chat(conversation_service, alice, bob, carol) -> str:
    view = await conversation_service.create_group_conversation("alice", "Team", ["bob", "carol"])
    return view.conversation.id


# ----------------------------------------------------------------------
# Preconditions
# ----------------------------------------------------------------------


async def test_send_to_missing_conversation(message_service, alice):
    with pytest.raises(NotFoundError):
        await message_service.send_message("does-not-exist", "alice", text("hi"))


async def test_send_to_soft_deleted_conversation(message_service, session, private_chat):
    conversation = await session.get(Conversation, private_chat)
    conversation.soft_delete()
    await session.commit()

    with pytest.raises(NotFoundError):
        await message_service.send_message(private_chat, "alice", text("hi"))


async def test_membership_gate(message_service, session, private_chat):
    await make_user(session, "mallory")

    with pytest.raises(NotAMemberError):
        await message_service.send_message(private_chat, "mallory", text("hi"))
    with pytest.raises(NotAMemberError):
        await message_service.get_messages(private_chat, "mallory", 1, 20)

    sent = await message_service.send_message(private_chat, "alice", text("hi"))
    with pytest.raises(NotAMemberError):
        await message_service.add_or_update_reaction(private_chat, "mallory", sent.id, ReactionType.LIKE)
    with pytest.raises(NotAMemberError):
        await message_service.remove_reaction(private_chat, "mallory", sent.id)

    page = await message_service.get_messages(private_chat, "bob", 1, 20)
    assert page.total == 1


@pytest.mark.parametrize("blocker,blocked", [("alice", "bob"), ("bob", "alice")])
async def test_send_in_private_conversation_refused_after_block(
    message_service, session, private_chat, blocker, blocked
):
    await block(session, blocker, blocked)

    with pytest.raises(BlockedError):
        await message_service.send_message(private_chat, "alice", text("hi"))

    result = await session.execute(select(Message).where(Message.conversation_id == private_chat))
    assert result.scalars().all() == []


async def test_block_does_not_apply_to_groups(message_service, session, group_chat):
    await block(session, "bob", "alice")
    sent = await message_service.send_message(group_chat, "alice", text("still here"))
    assert sent.sender_id == "alice"


@pytest.mark.parametrize(
    "payload",
    [
        SendMessageRequest(type=MessageType.TEXT),
        SendMessageRequest(type=MessageType.TEXT, text="   "),
        SendMessageRequest(type=MessageType.IMAGE),
        SendMessageRequest(type=MessageType.VIDEO, text="caption only"),
        SendMessageRequest(type=MessageType.AUDIO, media_url=" "),
        SendMessageRequest(type=MessageType.FILE, file_name="a.pdf"),
    ],
)
async def test_payload_must_match_type(message_service, private_chat, payload):
    with pytest.raises(InvalidPayloadError):
        await message_service.send_message(private_chat, "alice", payload)


@pytest.mark.parametrize(
    "payload",
    [
        SendMessageRequest(type=MessageType.TEXT, text="hello"),
        SendMessageRequest(type=MessageType.IMAGE, media_url="https://cdn/x.png", mime_type="image/png"),
        SendMessageRequest(type=MessageType.VIDEO, media_url="https://cdn/x.mp4", duration=3.5),
        SendMessageRequest(type=MessageType.AUDIO, media_url="https://cdn/x.m4a", duration=12),
        SendMessageRequest(type=MessageType.FILE, media_url="https://cdn/x.pdf", file_name="x.pdf", file_size=2048),
        SendMessageRequest(type=MessageType.SYSTEM, text="Alice renamed the group"),
    ],
)
async def test_valid_payloads_of_every_type(message_service, private_chat, payload):
    sent = await message_service.send_message(private_chat, "alice", payload)
    assert sent.type == payload.type
    assert sent.content.media_url == payload.media_url


async def test_reply_must_stay_in_conversation(message_service, private_chat, group_chat):
    elsewhere = await message_service.send_message(group_chat, "alice", text("group"))

    with pytest.raises(InvalidPayloadError):
        await message_service.send_message(private_chat, "alice", text("reply", reply_to_message_id=elsewhere.id))

    original = await message_service.send_message(private_chat, "bob", text("question?"))
    reply = await message_service.send_message(private_chat, "alice", text("answer", reply_to_message_id=original.id))
    assert reply.reply_to_message_id == original.id


async def test_reply_to_missing_message(message_service, private_chat):
    with pytest.raises(InvalidPayloadError):
        await message_service.send_message(private_chat, "alice", text("reply", reply_to_message_id=99999))


# ----------------------------------------------------------------------
# Side effects
# ----------------------------------------------------------------------


async def test_send_updates_last_message_and_unread(message_service, session_factory, group_chat):
    sent = await message_service.send_message(group_chat, "alice", text("hello team"))

    conversation = await conversation_row(session_factory, group_chat)
    assert conversation.last_message_id == sent.id
    assert conversation.last_message_sender_id == "alice"
    assert conversation.last_message_text == "hello team"

    assert (await member_row(session_factory, group_chat, "alice")).unread_count == 0
    assert (await member_row(session_factory, group_chat, "bob")).unread_count == 1
    assert (await member_row(session_factory, group_chat, "carol")).unread_count == 1


async def test_unread_counts_every_send_and_open_resets(message_service, session_factory, spawner, group_chat):
    for i in range(3):
        await message_service.send_message(group_chat, "alice", text(f"a{i}"))
    for i in range(2):
        await message_service.send_message(group_chat, "bob", text(f"b{i}"))

    assert (await member_row(session_factory, group_chat, "carol")).unread_count == 5
    assert (await member_row(session_factory, group_chat, "bob")).unread_count == 3
    assert (await member_row(session_factory, group_chat, "alice")).unread_count == 2

    await message_service.open_conversation(group_chat, "carol")
    assert (await member_row(session_factory, group_chat, "carol")).unread_count == 0
    # Opening is per member
    assert (await member_row(session_factory, group_chat, "bob")).unread_count == 3


async def test_unread_increment_is_not_read_modify_write(message_service, session_factory, group_chat):
    # A copy loaded before the send is stale; incrementing through another session must still add up
    stale_row = await member_row(session_factory, group_chat, "carol")
    assert stale_row.unread_count == 0

    await message_service.send_message(group_chat, "alice", text("one"))
    async with session_factory() as other:
        await MemberCRUD.increment_unread_for_others(other, group_chat, "bob")
        await other.commit()

    assert stale_row.unread_count == 0
    assert (await member_row(session_factory, group_chat, "carol")).unread_count == 2


async def test_side_effects_fall_back_without_transactions(
    message_service, session_factory, monkeypatch, caplog, private_chat
):
    async def no_transactions(self):
        raise NotSupportedError("COMMIT", {}, Exception("transactions are not supported"))

    monkeypatch.setattr(UnitOfWork, "_commit_atomic", no_transactions)

    sent = await message_service.send_message(private_chat, "alice", text("hi"))

    conversation = await conversation_row(session_factory, private_chat)
    assert conversation.last_message_id == sent.id
    assert conversation.last_message_text == "hi"
    assert (await member_row(session_factory, private_chat, "bob")).unread_count == 1
    assert "send message side effects" in caplog.text


async def test_broadcast_failure_does_not_fail_send(message_service, broadcaster, spawner, session_factory, private_chat):
    async def explode(*args, **kwargs):
        raise RuntimeError("socket layer down")

    broadcaster.emit_new_message = explode

    sent = await message_service.send_message(private_chat, "alice", text("still stored"))
    await spawner.drain()

    async with session_factory() as s:
        assert await s.get(Message, sent.id) is not None
    # Later fan-out steps still ran
    assert broadcaster.of("conversations:updated") == [("conversations:updated", "bob")]


async def test_send_broadcasts_to_room_and_members(message_service, broadcaster, spawner, group_chat):
    sent = await message_service.send_message(group_chat, "alice", text("hey"))
    await spawner.drain()

    [(_, conversation_id, payload, sender_id)] = broadcaster.of("message:new")
    assert conversation_id == group_chat
    assert sender_id == "alice"
    assert payload["id"] == sent.id
    assert payload["content"]["text"] == "hey"
    assert sorted(e[1] for e in broadcaster.of("conversations:updated")) == ["bob", "carol"]


# ----------------------------------------------------------------------
# End to end: notification routing
# ----------------------------------------------------------------------


async def test_offline_recipient_gets_record_socket_event_and_push(
    message_service, session, session_factory, broadcaster, push, spawner, private_chat
):
    await add_push_token(session, "bob", "bob-phone")

    sent = await message_service.send_message(private_chat, "alice", text("hi"))
    await spawner.drain()

    assert sent.sender_id == "alice"
    assert (await conversation_row(session_factory, private_chat)).last_message_text == "hi"
    assert (await member_row(session_factory, private_chat, "bob")).unread_count == 1

    async with session_factory() as s:
        [notification] = (await s.execute(select(Notification).where(Notification.user_id == "bob"))).scalars().all()
    assert notification.type == "message"
    assert notification.read is True
    assert notification.expires_at is not None
    assert notification.title == "Alice"
    assert notification.body == "hi"
    assert notification.data["conversationId"] == private_chat

    assert [d["token"] for d in push.deliveries] == ["bob-phone"]
    assert push.deliveries[0]["data"]["messageId"] == str(sent.id)
    assert [e[1] for e in broadcaster.of("notification:new")] == ["bob"]
    assert broadcaster.of("notification:unread_count")[0][2] == {"count": 0}


async def test_muted_recipient_gets_no_push(
    message_service, session, session_factory, broadcaster, push, spawner, private_chat
):
    await add_push_token(session, "bob", "bob-phone")
    member = await MemberCRUD.get(session, private_chat, "bob")
    member.is_muted = True
    await session.commit()

    await message_service.send_message(private_chat, "alice", text("hi"))
    await spawner.drain()

    async with session_factory() as s:
        notifications = (await s.execute(select(Notification).where(Notification.user_id == "bob"))).scalars().all()
    assert len(notifications) == 1
    assert [e[1] for e in broadcaster.of("notification:new")] == ["bob"]
    assert push.deliveries == []


async def test_active_recipient_gets_no_push(message_service, session, presence, push, spawner, private_chat):
    await add_push_token(session, "bob", "bob-phone")
    presence.active.add("bob")

    await message_service.send_message(private_chat, "alice", text("hi"))
    await spawner.drain()

    assert push.deliveries == []


async def test_sender_is_never_notified(message_service, session_factory, spawner, group_chat):
    await message_service.send_message(group_chat, "alice", text("hi"))
    await spawner.drain()

    async with session_factory() as s:
        recipients = (await s.execute(select(Notification.user_id))).scalars().all()
    assert sorted(recipients) == ["bob", "carol"]


# ----------------------------------------------------------------------
# Listing
# ----------------------------------------------------------------------


async def test_messages_newest_first_with_stable_pages(message_service, private_chat):
    sent = [await message_service.send_message(private_chat, "alice", text(f"m{i}")) for i in range(5)]

    first = await message_service.get_messages(private_chat, "bob", 1, 2)
    second = await message_service.get_messages(private_chat, "bob", 2, 2)
    third = await message_service.get_messages(private_chat, "bob", 3, 2)

    ids = [m.id for m in first.items + second.items + third.items]
    assert ids == [m.id for m in reversed(sent)]
    assert first.total == 5
    assert first.total_pages == 3


async def test_soft_deleted_messages_are_hidden(message_service, session, private_chat):
    keep = await message_service.send_message(private_chat, "alice", text("keep"))
    gone = await message_service.send_message(private_chat, "alice", text("gone"))
    row = await session.get(Message, gone.id)
    row.is_deleted = True
    await session.commit()

    page = await message_service.get_messages(private_chat, "alice", 1, 20)
    assert [m.id for m in page.items] == [keep.id]


async def test_messages_by_sender(message_service, session, group_chat):
    await message_service.send_message(group_chat, "alice", text("a1"))
    await message_service.send_message(group_chat, "bob", text("b1"))
    await message_service.send_message(group_chat, "alice", text("a2"))

    page = await message_service.get_messages_by_sender(group_chat, "carol", "alice", 1, 20)
    assert [m.content.text for m in page.items] == ["a2", "a1"]

    await make_user(session, "outsider")
    with pytest.raises(NotAMemberError):
        await message_service.get_messages_by_sender(group_chat, "carol", "outsider", 1, 20)


# ----------------------------------------------------------------------
# Conversation list
# ----------------------------------------------------------------------


async def test_conversation_list_pinned_first_then_recent(message_service, conversation_service, session, alice, bob, carol):
    with_bob = (await conversation_service.ensure_private_conversation("alice", "bob")).conversation.id
    with_carol = (await conversation_service.ensure_private_conversation("alice", "carol")).conversation.id
    group = (await conversation_service.create_group_conversation("alice", "Team", ["bob", "carol"])).conversation.id

    await message_service.send_message(with_bob, "bob", text("old"))
    await message_service.send_message(group, "carol", text("newer"))
    await message_service.send_message(with_carol, "carol", text("newest"))

    page = await message_service.get_user_conversations("alice", 1, 20)
    assert [v.conversation.id for v in page.items] == [with_carol, group, with_bob]

    member = await MemberCRUD.get(session, with_bob, "alice")
    member.is_pinned = True
    await session.commit()

    page = await message_service.get_user_conversations("alice", 1, 20)
    assert [v.conversation.id for v in page.items] == [with_bob, with_carol, group]


async def test_conversation_list_filters_before_paging(message_service, conversation_service, alice, bob, carol):
    await conversation_service.ensure_private_conversation("alice", "bob")
    await conversation_service.ensure_private_conversation("alice", "carol")
    await conversation_service.create_group_conversation("alice", "Book club", ["bob"])

    groups = await message_service.get_user_conversations("alice", 1, 1, conversation_type=ConversationType.GROUP)
    assert groups.total == 1
    assert groups.items[0].conversation.name == "Book club"

    by_name = await message_service.get_user_conversations("alice", 1, 20, search="car")
    assert [v.conversation.other_user_name for v in by_name.items] == ["Carol"]

    by_group_name = await message_service.get_user_conversations("alice", 1, 20, search="BOOK")
    assert [v.conversation.name for v in by_group_name.items] == ["Book club"]


async def test_conversation_list_resolves_counterpart_live(
    message_service, conversation_service, session, alice, bob
):
    await conversation_service.ensure_private_conversation("alice", "bob")
    bob.display_name = "Bobby"
    bob.avatar_url = "https://cdn/bobby.png"
    await session.commit()

    # Bob's view shows Alice even though the cache was written from Alice's side
    [bob_view] = (await message_service.get_user_conversations("bob", 1, 20)).items
    assert bob_view.conversation.other_user_id == "alice"
    assert bob_view.conversation.other_user_name == "Alice"

    [alice_view] = (await message_service.get_user_conversations("alice", 1, 20)).items
    assert alice_view.conversation.other_user_name == "Bobby"
    assert alice_view.conversation.other_user_avatar == "https://cdn/bobby.png"


def test_preview_strings():
    assert build_preview(MessageType.TEXT, "hello") == "hello"
    assert build_preview(MessageType.IMAGE) == "Sent an image"
    assert build_preview(MessageType.VIDEO) == "Sent a video"
    assert build_preview(MessageType.AUDIO) == "Sent an audio message"
    assert build_preview(MessageType.FILE, file_name="report.pdf") == "Sent a file: report.pdf"
    assert build_preview(MessageType.FILE) == "Sent a file"
    assert build_preview(MessageType.SYSTEM, "anything") == "System message"
