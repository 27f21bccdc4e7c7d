"""
CRUD layer for messages and reactions.
"""

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.message import Message, MessageReaction


class MessageCRUD:
    """Message store"""

    @staticmethod
    async def get_in_conversation(
        db: AsyncSession,
        message_id: int,
        conversation_id: str,
        include_deleted: bool = True,
    ) -> Optional[Message]:
        stmt = select(Message).where(
            Message.id == message_id,
            Message.conversation_id == conversation_id,
        )
        if not include_deleted:
            stmt = stmt.where(Message.is_deleted.is_(False))
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def reload(db: AsyncSession, message_id: int) -> Message:
        """Fresh copy including the current reaction list"""
        result = await db.execute(
            select(Message)
            .where(Message.id == message_id)
            .options(selectinload(Message.reactions))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    @staticmethod
    async def list_page(
        db: AsyncSession,
        conversation_id: str,
        *,
        offset: int,
        limit: int,
        sender_id: Optional[str] = None,
    ) -> tuple[list[Message], int]:
        """Newest first; ties on created_at are broken by insertion sequence"""
        conditions = [
            Message.conversation_id == conversation_id,
            Message.is_deleted.is_(False),
        ]
        if sender_id is not None:
            conditions.append(Message.sender_id == sender_id)

        page_stmt = (
            select(Message)
            .where(*conditions)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .offset(offset)
            .limit(limit)
        )
        count_stmt = select(func.count(Message.id)).where(*conditions)

        items = list((await db.execute(page_stmt)).scalars().all())
        total = (await db.execute(count_stmt)).scalar_one()
        return items, total

    @staticmethod
    async def remove_reaction(db: AsyncSession, message: Message, user_id: str) -> bool:
        """Drop the user's reaction from the loaded collection; False when there was none"""
        kept = [r for r in message.reactions if r.user_id != user_id]
        if len(kept) == len(message.reactions):
            return False
        message.reactions = kept  # delete-orphan issues the DELETE
        await db.flush()
        return True

    @staticmethod
    async def replace_reaction(db: AsyncSession, message: Message, user_id: str, reaction_type: str) -> None:
        """Remove then append: at most one reaction per (message, user)"""
        # Flush the delete first so the (message_id, user_id) constraint never sees two rows
        await MessageCRUD.remove_reaction(db, message, user_id)
        message.reactions.append(MessageReaction(user_id=user_id, type=reaction_type))
        await db.flush()
