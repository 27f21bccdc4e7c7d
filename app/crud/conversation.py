"""
CRUD layer for conversations and memberships.
"""

from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.conversation import Conversation, ConversationMember, ConversationType
from app.models.user import User


class ConversationCRUD:
    """Conversation store"""

    @staticmethod
    async def get(db: AsyncSession, conversation_id: str, include_deleted: bool = False) -> Optional[Conversation]:
        stmt = select(Conversation).where(Conversation.id == conversation_id)
        if not include_deleted:
            stmt = stmt.where(Conversation.is_deleted.is_(False))
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def find_shared_private(db: AsyncSession, user_a: str, user_b: str) -> Optional[Conversation]:
        """Non-deleted PRIVATE conversation both users belong to (intersection of their memberships)"""
        ids_a = select(ConversationMember.conversation_id).where(ConversationMember.user_id == user_a)
        ids_b = select(ConversationMember.conversation_id).where(ConversationMember.user_id == user_b)
        stmt = (
            select(Conversation)
            .where(
                Conversation.type == ConversationType.PRIVATE.value,
                Conversation.is_deleted.is_(False),
                Conversation.id.in_(ids_a),
                Conversation.id.in_(ids_b),
            )
            .order_by(Conversation.created_at)
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: str,
        *,
        offset: int,
        limit: int,
        conversation_type: Optional[ConversationType] = None,
        search: Optional[str] = None,
    ) -> tuple[list[tuple[ConversationMember, Conversation]], int]:
        """
        Memberships of a user joined with their conversations.
        Filters apply before pagination; pinned first, then most recent activity.
        """
        conditions: list[Any] = [
            ConversationMember.user_id == user_id,
            Conversation.is_deleted.is_(False),
        ]
        if conversation_type is not None:
            conditions.append(Conversation.type == conversation_type.value)
        if search:
            pattern = f"%{search.lower()}%"
            counterpart = counterpart_name_matches(user_id, pattern)
            conditions.append(
                or_(
                    func.lower(Conversation.name).like(pattern),
                    and_(Conversation.type == ConversationType.PRIVATE.value, counterpart),
                )
            )

        base = (
            select(ConversationMember, Conversation)
            .join(Conversation, Conversation.id == ConversationMember.conversation_id)
            .where(*conditions)
        )
        activity = func.coalesce(Conversation.last_message_at, Conversation.created_at)
        page_stmt = (
            base.order_by(
                ConversationMember.is_pinned.desc(),
                activity.desc(),
                Conversation.id,
            )
            .offset(offset)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(base.subquery())

        rows = (await db.execute(page_stmt)).all()
        total = (await db.execute(count_stmt)).scalar_one()
        return [(row[0], row[1]) for row in rows], total

    @staticmethod
    async def set_last_message(
        db: AsyncSession,
        conversation_id: str,
        *,
        message_id: int,
        sender_id: str,
        preview: str,
        sent_at: datetime,
    ) -> None:
        """Last writer wins"""
        await db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(
                last_message_id=message_id,
                last_message_sender_id=sender_id,
                last_message_text=preview,
                last_message_at=sent_at,
            )
        )


def counterpart_name_matches(user_id: str, pattern: str):
    """EXISTS clause: another member of the conversation whose name matches"""
    return (
        select(ConversationMember.id)
        .join(User, User.id == ConversationMember.user_id)
        .where(
            ConversationMember.conversation_id == Conversation.id,
            ConversationMember.user_id != user_id,
            or_(
                func.lower(User.display_name).like(pattern),
                func.lower(User.username).like(pattern),
            ),
        )
        .correlate(Conversation)
        .exists()
    )


class MemberCRUD:
    """Membership store"""

    @staticmethod
    async def get(db: AsyncSession, conversation_id: str, user_id: str) -> Optional[ConversationMember]:
        result = await db.execute(
            select(ConversationMember).where(
                ConversationMember.conversation_id == conversation_id,
                ConversationMember.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def list_for_conversation(db: AsyncSession, conversation_id: str) -> Sequence[ConversationMember]:
        result = await db.execute(
            select(ConversationMember)
            .where(ConversationMember.conversation_id == conversation_id)
            .order_by(ConversationMember.id)
        )
        return result.scalars().all()

    @staticmethod
    async def other_member(db: AsyncSession, conversation_id: str, user_id: str) -> Optional[ConversationMember]:
        result = await db.execute(
            select(ConversationMember)
            .where(
                ConversationMember.conversation_id == conversation_id,
                ConversationMember.user_id != user_id,
            )
            .order_by(ConversationMember.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def counterparts(db: AsyncSession, conversation_ids: Sequence[str], user_id: str) -> dict[str, User]:
        """conversation id -> the other member's user row"""
        if not conversation_ids:
            return {}
        result = await db.execute(
            select(ConversationMember.conversation_id, User)
            .join(User, User.id == ConversationMember.user_id)
            .where(
                ConversationMember.conversation_id.in_(list(conversation_ids)),
                ConversationMember.user_id != user_id,
            )
            .order_by(ConversationMember.id)
        )
        mapping: dict[str, User] = {}
        for conversation_id, user in result.all():
            mapping.setdefault(conversation_id, user)
        return mapping

    @staticmethod
    async def increment_unread_for_others(db: AsyncSession, conversation_id: str, sender_id: str) -> None:
        """Atomic +1 in the store, no read-modify-write"""
        await db.execute(
            update(ConversationMember)
            .where(
                ConversationMember.conversation_id == conversation_id,
                ConversationMember.user_id != sender_id,
            )
            .values(unread_count=ConversationMember.unread_count + 1)
        )

    @staticmethod
    async def reset_unread(db: AsyncSession, conversation_id: str, user_id: str) -> int:
        result = await db.execute(
            update(ConversationMember)
            .where(
                ConversationMember.conversation_id == conversation_id,
                ConversationMember.user_id == user_id,
            )
            .values(unread_count=0)
        )
        return result.rowcount or 0
