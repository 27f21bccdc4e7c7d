"""
Conversation Models

Conversation metadata and per-user membership settings.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.time import utcnow
from app.models.base import Base, TimestampMixin, new_uuid


class ConversationType(str, enum.Enum):
    PRIVATE = "PRIVATE"
    GROUP = "GROUP"


class MemberRole(str, enum.Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


def private_pair_key(user_a: str, user_b: str) -> str:
    """Order-independent key for a pair of users"""
    low, high = sorted((str(user_a), str(user_b)))
    return f"{low}:{high}"


class Conversation(Base, TimestampMixin):
    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)  # PRIVATE, GROUP
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    # PRIVATE only: counterpart from the creator's perspective, refreshed lazily
    other_user_id: Mapped[Optional[str]] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    other_user_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_by: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    member_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Last message snapshot
    last_message_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_message_sender_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    last_message_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # "<low>:<high>" while PRIVATE and not deleted, NULL otherwise
    private_key: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("private_key", name="uq_conversations_private_key"),
        Index("idx_conversations_last_message_at", "last_message_at"),
    )

    @property
    def last_message(self) -> Optional[dict]:
        if self.last_message_id is None:
            return None
        return {
            "message_id": self.last_message_id,
            "sender_id": self.last_message_sender_id,
            "text": self.last_message_text or "",
            "created_at": self.last_message_at,
        }

    def soft_delete(self) -> None:
        """Soft delete frees the pair key so a new private conversation may be created"""
        self.is_deleted = True
        self.private_key = None


class ConversationMember(Base, TimestampMixin):
    __tablename__ = "conversation_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(ForeignKey("conversations.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    role: Mapped[str] = mapped_column(String(16), default=MemberRole.MEMBER.value, nullable=False)
    nickname: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    custom_background: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    is_muted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_conversation_blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)  # local ignore

    unread_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    left_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("conversation_id", "user_id", name="uq_conversation_members_pair"),
        Index("idx_conversation_members_user_pinned", "user_id", "is_pinned", "updated_at"),
        Index("idx_conversation_members_user_unread", "user_id", "unread_count"),
    )
