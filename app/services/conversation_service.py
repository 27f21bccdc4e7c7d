"""
Conversation Service

Private (1:1) and group conversation creation. A private conversation is
unique per pair of users; the unique private_key column is the guard, so
two first-contact calls may race and the loser re-reads the winner.
"""

from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import BlockedError, InvalidPayloadError, NotFoundError
from app.core.logging import get_logger
from app.crud.conversation import ConversationCRUD, MemberCRUD
from app.models.base import new_uuid
from app.models.conversation import (
    Conversation,
    ConversationMember,
    ConversationType,
    MemberRole,
    private_pair_key,
)
from app.models.user import User
from app.schemas.conversation import (
    ConversationResponse,
    ConversationView,
    GroupConversationView,
    MemberResponse,
)
from app.services.interfaces import RelationshipOracle
from app.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)


def conversation_response(conversation: Conversation, counterpart: Optional[User] = None) -> ConversationResponse:
    """
    Serialize a conversation for one viewer.

    For PRIVATE conversations the counterpart fields come from the live user
    row when one is given, so renames show up without touching the cache.
    """
    data = ConversationResponse.model_validate(conversation)
    if counterpart is not None and conversation.type == ConversationType.PRIVATE.value:
        data = data.model_copy(
            update={
                "other_user_id": counterpart.id,
                "other_user_name": counterpart.public_name,
                "other_user_avatar": counterpart.avatar_url,
            }
        )
    return data


def conversation_view(
    conversation: Conversation,
    member: ConversationMember,
    counterpart: Optional[User] = None,
) -> ConversationView:
    return ConversationView(
        conversation=conversation_response(conversation, counterpart),
        member_settings=MemberResponse.model_validate(member),
    )


def unique_member_ids(creator_id: str, member_ids: Iterable[str]) -> list[str]:
    """Creator first, duplicates and blanks dropped, order kept"""
    seen: dict[str, None] = {creator_id: None}
    for member_id in member_ids:
        member_id = (member_id or "").strip()
        if member_id:
            seen.setdefault(member_id, None)
    return list(seen)


class ConversationService:
    def __init__(self, session: AsyncSession, relationships: RelationshipOracle):
        self.session = session
        self.relationships = relationships

    async def _get_user(self, user_id: str) -> User:
        user = await self.session.get(User, user_id, populate_existing=True)
        if user is None:
            raise NotFoundError("User not found", {"userId": user_id})
        return user

    async def ensure_private_conversation(self, user_id: str, other_user_id: str) -> ConversationView:
        """
        Return the private conversation between two users, creating it on
        first contact. Safe to call repeatedly from either side.
        """
        if user_id == other_user_id:
            raise InvalidPayloadError("Cannot start a conversation with yourself")

        other = await self._get_user(other_user_id)

        if await self.relationships.is_blocked(user_id, other_user_id):
            raise BlockedError("Conversation is not allowed between these users")

        conversation = await ConversationCRUD.find_shared_private(self.session, user_id, other_user_id)
        if conversation is not None:
            await self._refresh_cached_name(conversation)
        else:
            conversation = await self._create_private(user_id, other)

        member = await MemberCRUD.get(self.session, conversation.id, user_id)
        if member is None:
            # Sequential creation crashed between the conversation and its members
            raise NotFoundError("Conversation membership is incomplete", {"conversationId": conversation.id})

        other = await self._get_user(other_user_id)
        return conversation_view(conversation, member, other)

    async def _refresh_cached_name(self, conversation: Conversation) -> None:
        """The cached name is written from the creator's side; keep it current"""
        if conversation.other_user_id is None:
            return
        cached_user = await self.session.get(User, conversation.other_user_id)
        if cached_user is None or conversation.other_user_name == cached_user.public_name:
            return
        logger.debug(f"Refreshing cached name on conversation {conversation.id}")
        conversation.other_user_name = cached_user.public_name
        await self.session.commit()

    async def _create_private(self, user_id: str, other: User) -> Conversation:
        conversation_id = new_uuid()
        other_user_id = other.id
        other_name = other.public_name

        async def add_conversation() -> None:
            self.session.add(
                Conversation(
                    id=conversation_id,
                    type=ConversationType.PRIVATE.value,
                    created_by=user_id,
                    other_user_id=other_user_id,
                    other_user_name=other_name,
                    member_count=2,
                    private_key=private_pair_key(user_id, other_user_id),
                )
            )
            await self.session.flush()

        async def add_members() -> None:
            self.session.add_all(
                [
                    ConversationMember(conversation_id=conversation_id, user_id=user_id, role=MemberRole.MEMBER.value),
                    ConversationMember(conversation_id=conversation_id, user_id=other_user_id, role=MemberRole.MEMBER.value),
                ]
            )
            await self.session.flush()

        try:
            await UnitOfWork(self.session).run(add_conversation, add_members, label="create private conversation")
        except IntegrityError:
            # Lost the first-contact race; the unit of work already rolled back
            winner = await ConversationCRUD.find_shared_private(self.session, user_id, other_user_id)
            if winner is None:
                raise
            logger.info(f"Private conversation for {user_id} and {other_user_id} created concurrently, using {winner.id}")
            return winner

        logger.info(f"Private conversation {conversation_id} created by {user_id} with {other_user_id}")
        return await self._load(conversation_id)

    async def _load(self, conversation_id: str) -> Conversation:
        result = await self.session.execute(
            select(Conversation)
            .where(Conversation.id == conversation_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def create_group_conversation(
        self,
        creator_id: str,
        name: str,
        member_ids: Iterable[str],
    ) -> GroupConversationView:
        name = (name or "").strip()
        if not name:
            raise InvalidPayloadError("Group name is required")

        user_ids = unique_member_ids(creator_id, member_ids)
        result = await self.session.execute(select(User.id).where(User.id.in_(user_ids)))
        missing = set(user_ids) - set(result.scalars().all())
        if missing:
            raise NotFoundError("Some members do not exist", {"userIds": sorted(missing)})

        conversation_id = new_uuid()

        async def add_conversation() -> None:
            self.session.add(
                Conversation(
                    id=conversation_id,
                    type=ConversationType.GROUP.value,
                    name=name,
                    created_by=creator_id,
                    member_count=len(user_ids),
                )
            )
            await self.session.flush()

        async def add_members() -> None:
            self.session.add_all(
                [
                    ConversationMember(
                        conversation_id=conversation_id,
                        user_id=member_id,
                        role=(MemberRole.ADMIN if member_id == creator_id else MemberRole.MEMBER).value,
                    )
                    for member_id in user_ids
                ]
            )
            await self.session.flush()

        await UnitOfWork(self.session).run(add_conversation, add_members, label="create group conversation")
        logger.info(f"Group conversation {conversation_id} created by {creator_id} with {len(user_ids)} members")

        conversation = await self._load(conversation_id)
        members = await MemberCRUD.list_for_conversation(self.session, conversation_id)
        return GroupConversationView(
            conversation=conversation_response(conversation),
            members=[MemberResponse.model_validate(m) for m in members],
        )
