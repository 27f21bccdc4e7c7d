"""
Message Service

Conversation listing, message send/list, reactions and per-member
settings. Writes commit first; realtime broadcast and notification
fan-out are spawned afterwards and can never undo a stored message.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import BlockedError, InvalidPayloadError, NotAMemberError, NotFoundError
from app.core.logging import get_logger
from app.crud.conversation import ConversationCRUD, MemberCRUD
from app.crud.message import MessageCRUD
from app.models.conversation import Conversation, ConversationMember, ConversationType
from app.models.message import MEDIA_MESSAGE_TYPES, Message, MessageType, ReactionType
from app.models.user import User
from app.schemas.common import Page, total_pages
from app.schemas.conversation import ConversationView, MemberResponse, MemberSettingsUpdate
from app.schemas.message import MessageResponse, ReactionResponse, SendMessageRequest
from app.services.conversation_service import conversation_view
from app.services.interfaces import Broadcaster, NotificationSink, RelationshipOracle
from app.services.tasks import TaskSpawner
from app.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)

DEFAULT_SENDER_NAME = "New message"

CLEARABLE_SETTINGS = frozenset({"nickname", "custom_background"})

MEDIA_PREVIEWS = {
    MessageType.IMAGE: "Sent an image",
    MessageType.VIDEO: "Sent a video",
    MessageType.AUDIO: "Sent an audio message",
}


def build_preview(message_type: MessageType, text: Optional[str] = None, file_name: Optional[str] = None) -> str:
    """Human readable last-message text for a conversation list"""
    if message_type == MessageType.TEXT:
        return text or ""
    if message_type in MEDIA_PREVIEWS:
        return MEDIA_PREVIEWS[message_type]
    if message_type == MessageType.FILE:
        return f"Sent a file: {file_name}" if file_name else "Sent a file"
    return "System message"


def validate_payload(payload: SendMessageRequest) -> None:
    """Content must match the declared type"""
    if payload.type == MessageType.TEXT:
        if not payload.text or not payload.text.strip():
            raise InvalidPayloadError("Text message requires non-empty text")
    elif payload.type in MEDIA_MESSAGE_TYPES:
        if not payload.media_url or not payload.media_url.strip():
            raise InvalidPayloadError(f"{payload.type.value} message requires a media url")


@dataclass(frozen=True)
class SentMessage:
    """Plain values of a stored message, safe to use after a rollback"""

    conversation_id: str
    message_id: int
    sender_id: str
    preview: str
    sent_at: datetime


@dataclass(frozen=True)
class Recipient:
    user_id: str
    is_muted: bool


class MessageService:
    def __init__(
        self,
        session: AsyncSession,
        relationships: RelationshipOracle,
        broadcaster: Broadcaster,
        notifications: NotificationSink,
        spawner: TaskSpawner,
    ):
        self.session = session
        self.relationships = relationships
        self.broadcaster = broadcaster
        self.notifications = notifications
        self.spawner = spawner

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    async def _get_conversation(self, conversation_id: str) -> Conversation:
        conversation = await ConversationCRUD.get(self.session, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found", {"conversationId": conversation_id})
        return conversation

    async def _require_member(self, conversation_id: str, user_id: str) -> ConversationMember:
        member = await MemberCRUD.get(self.session, conversation_id, user_id)
        if member is None:
            raise NotAMemberError("You are not a member of this conversation")
        return member

    async def _get_message(self, conversation_id: str, message_id: int) -> Message:
        message = await MessageCRUD.get_in_conversation(
            self.session, message_id, conversation_id, include_deleted=False
        )
        if message is None:
            raise NotFoundError("Message not found", {"messageId": message_id})
        return message

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def get_user_conversations(
        self,
        user_id: str,
        page: int,
        limit: int,
        conversation_type: Optional[ConversationType] = None,
        search: Optional[str] = None,
    ) -> Page[ConversationView]:
        search = search.strip() if search else None
        rows, total = await ConversationCRUD.list_for_user(
            self.session,
            user_id,
            offset=(page - 1) * limit,
            limit=limit,
            conversation_type=conversation_type,
            search=search,
        )

        private_ids = [conv.id for _, conv in rows if conv.type == ConversationType.PRIVATE.value]
        counterparts = await MemberCRUD.counterparts(self.session, private_ids, user_id)

        items = [conversation_view(conv, member, counterparts.get(conv.id)) for member, conv in rows]
        return Page[ConversationView](items=items, total=total, page=page, total_pages=total_pages(total, limit))

    async def open_conversation(self, conversation_id: str, user_id: str) -> None:
        """The member looked at the conversation: unread goes back to zero"""
        await self._get_conversation(conversation_id)
        await self._require_member(conversation_id, user_id)
        await MemberCRUD.reset_unread(self.session, conversation_id, user_id)
        await self.session.commit()
        self.spawner.spawn(
            self.broadcaster.emit_conversation_list_changed(user_id),
            name=f"conversations-updated:{user_id}",
        )

    async def update_member_settings(
        self,
        conversation_id: str,
        user_id: str,
        update: MemberSettingsUpdate,
    ) -> MemberResponse:
        # Explicit null clears a text field; flags are never nullable
        fields = {
            field: value
            for field, value in update.model_dump(exclude_unset=True).items()
            if value is not None or field in CLEARABLE_SETTINGS
        }
        if not fields:
            raise InvalidPayloadError("No settings to update")

        await self._get_conversation(conversation_id)
        member = await self._require_member(conversation_id, user_id)
        for field, value in fields.items():
            setattr(member, field, value)
        await self.session.commit()
        await self.session.refresh(member)

        self.spawner.spawn(
            self.broadcaster.emit_conversation_list_changed(user_id),
            name=f"conversations-updated:{user_id}",
        )
        return MemberResponse.model_validate(member)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(self, conversation_id: str, sender_id: str, payload: SendMessageRequest) -> MessageResponse:
        conversation = await self._get_conversation(conversation_id)
        await self._require_member(conversation_id, sender_id)

        if conversation.type == ConversationType.PRIVATE.value:
            other = await MemberCRUD.other_member(self.session, conversation_id, sender_id)
            if other is not None and await self.relationships.is_blocked(sender_id, other.user_id):
                raise BlockedError("You cannot message this user")

        validate_payload(payload)

        if payload.reply_to_message_id is not None:
            replied = await MessageCRUD.get_in_conversation(self.session, payload.reply_to_message_id, conversation_id)
            if replied is None:
                raise InvalidPayloadError(
                    "Replied message does not belong to this conversation",
                    {"replyToMessageId": payload.reply_to_message_id},
                )

        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            type=payload.type.value,
            text=payload.text,
            media_url=payload.media_url,
            mime_type=payload.mime_type,
            file_name=payload.file_name,
            file_size=payload.file_size,
            duration=payload.duration,
            reply_to_message_id=payload.reply_to_message_id,
        )
        self.session.add(message)
        await self.session.commit()

        sent = SentMessage(
            conversation_id=conversation_id,
            message_id=message.id,
            sender_id=sender_id,
            preview=build_preview(payload.type, payload.text, payload.file_name),
            sent_at=message.created_at,
        )
        members = await MemberCRUD.list_for_conversation(self.session, conversation_id)
        recipients = [Recipient(m.user_id, m.is_muted) for m in members if m.user_id != sender_id]
        sender = await self.session.get(User, sender_id)
        sender_name = sender.public_name if sender is not None else DEFAULT_SENDER_NAME

        await self.apply_conversation_side_effects(sent)

        message = await MessageCRUD.reload(self.session, sent.message_id)
        response = MessageResponse.model_validate(message)
        logger.info(f"Message {sent.message_id} sent to conversation {conversation_id} by {sender_id}")

        self.spawner.spawn(
            self._fan_out(sent, response.model_dump(mode="json", by_alias=True), recipients, sender_name),
            name=f"message-fan-out:{sent.message_id}",
        )
        return response

    async def apply_conversation_side_effects(self, sent: SentMessage) -> bool:
        """
        Last-message snapshot and unread counters as one unit.

        Returns False when the store could not do it atomically and the
        steps were applied one by one.
        """

        async def update_last_message() -> None:
            await ConversationCRUD.set_last_message(
                self.session,
                sent.conversation_id,
                message_id=sent.message_id,
                sender_id=sent.sender_id,
                preview=sent.preview,
                sent_at=sent.sent_at,
            )

        async def increment_unread() -> None:
            await MemberCRUD.increment_unread_for_others(self.session, sent.conversation_id, sent.sender_id)

        # A crash between the two fallback commits followed by a retry would count twice:
        # the increment carries no idempotency key.
        return await UnitOfWork(self.session).run(
            update_last_message,
            increment_unread,
            label="send message side effects",
        )

    async def _fan_out(
        self,
        sent: SentMessage,
        message_payload: dict[str, Any],
        recipients: list[Recipient],
        sender_name: str,
    ) -> None:
        """Broadcast and notify; one failing recipient does not stop the others"""
        try:
            await self.broadcaster.emit_new_message(sent.conversation_id, message_payload, sent.sender_id)
        except Exception as e:
            logger.error(f"Broadcast of message {sent.message_id} failed: {e}")

        for recipient in recipients:
            try:
                await self.broadcaster.emit_conversation_list_changed(recipient.user_id)
                await self.notifications.message_received(
                    recipient_id=recipient.user_id,
                    is_muted=recipient.is_muted,
                    sender_id=sent.sender_id,
                    sender_name=sender_name,
                    conversation_id=sent.conversation_id,
                    message_id=sent.message_id,
                    preview=sent.preview,
                )
            except Exception as e:
                logger.error(f"Fan-out of message {sent.message_id} to {recipient.user_id} failed: {e}")

    async def _list(
        self,
        conversation_id: str,
        page: int,
        limit: int,
        sender_id: Optional[str] = None,
    ) -> Page[MessageResponse]:
        items, total = await MessageCRUD.list_page(
            self.session,
            conversation_id,
            offset=(page - 1) * limit,
            limit=limit,
            sender_id=sender_id,
        )
        return Page[MessageResponse](
            items=[MessageResponse.model_validate(m) for m in items],
            total=total,
            page=page,
            total_pages=total_pages(total, limit),
        )

    async def get_messages(self, conversation_id: str, user_id: str, page: int, limit: int) -> Page[MessageResponse]:
        await self._get_conversation(conversation_id)
        await self._require_member(conversation_id, user_id)
        return await self._list(conversation_id, page, limit)

    async def get_messages_by_sender(
        self,
        conversation_id: str,
        user_id: str,
        sender_id: str,
        page: int,
        limit: int,
    ) -> Page[MessageResponse]:
        await self._get_conversation(conversation_id)
        await self._require_member(conversation_id, user_id)
        # Former members keep their row with left_at set, so this covers them too
        if await MemberCRUD.get(self.session, conversation_id, sender_id) is None:
            raise NotAMemberError("Sender is not a member of this conversation")
        return await self._list(conversation_id, page, limit, sender_id=sender_id)

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    async def add_or_update_reaction(
        self,
        conversation_id: str,
        user_id: str,
        message_id: int,
        reaction_type: ReactionType,
    ) -> MessageResponse:
        await self._get_conversation(conversation_id)
        await self._require_member(conversation_id, user_id)
        message = await self._get_message(conversation_id, message_id)

        try:
            await MessageCRUD.replace_reaction(self.session, message, user_id, reaction_type.value)
            await self.session.commit()
        except IntegrityError:
            # A concurrent reaction by the same user landed first; replace that one
            await self.session.rollback()
            logger.info(f"Reaction by {user_id} on message {message_id} raced, retrying")
            message = await MessageCRUD.reload(self.session, message_id)
            await MessageCRUD.replace_reaction(self.session, message, user_id, reaction_type.value)
            await self.session.commit()

        message = await MessageCRUD.reload(self.session, message_id)
        self._broadcast_reactions(conversation_id, message)
        return MessageResponse.model_validate(message)

    async def remove_reaction(self, conversation_id: str, user_id: str, message_id: int) -> MessageResponse:
        await self._get_conversation(conversation_id)
        await self._require_member(conversation_id, user_id)
        message = await self._get_message(conversation_id, message_id)

        removed = await MessageCRUD.remove_reaction(self.session, message, user_id)
        if removed:
            await self.session.commit()
            message = await MessageCRUD.reload(self.session, message_id)
            self._broadcast_reactions(conversation_id, message)
        return MessageResponse.model_validate(message)

    def _broadcast_reactions(self, conversation_id: str, message: Message) -> None:
        payload = {
            "conversationId": conversation_id,
            "messageId": message.id,
            "reactions": [
                ReactionResponse.model_validate(r).model_dump(mode="json", by_alias=True) for r in message.reactions
            ],
        }
        self.spawner.spawn(
            self.broadcaster.emit_reaction_delta(conversation_id, payload),
            name=f"reaction-delta:{message.id}",
        )
