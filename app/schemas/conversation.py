"""
Conversation Schemas
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from app.models.conversation import ConversationType
from app.schemas.common import CamelModel


class LastMessageSnapshot(CamelModel):
    message_id: int
    sender_id: Optional[str] = None
    text: str = ""
    created_at: Optional[datetime] = None


class ConversationResponse(CamelModel):
    id: str
    type: ConversationType
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    other_user_id: Optional[str] = None
    other_user_name: Optional[str] = None
    other_user_avatar: Optional[str] = None
    created_by: str
    member_count: int
    last_message: Optional[LastMessageSnapshot] = None
    is_deleted: bool = False
    created_at: datetime
    updated_at: datetime


class MemberResponse(CamelModel):
    id: int
    conversation_id: str
    user_id: str
    role: str
    nickname: Optional[str] = None
    custom_background: Optional[str] = None
    is_muted: bool
    is_pinned: bool
    is_conversation_blocked: bool
    unread_count: int
    joined_at: datetime
    left_at: Optional[datetime] = None


class ConversationView(CamelModel):
    """A conversation as seen by one member"""
    conversation: ConversationResponse
    member_settings: MemberResponse


class GroupConversationView(CamelModel):
    conversation: ConversationResponse
    members: List[MemberResponse]


class PrivateConversationCreate(CamelModel):
    user_id: str = Field(min_length=1)


class GroupConversationCreate(CamelModel):
    name: str
    member_ids: List[str] = []


class MemberSettingsUpdate(CamelModel):
    nickname: Optional[str] = Field(default=None, max_length=255)
    custom_background: Optional[str] = Field(default=None, max_length=1024)
    is_muted: Optional[bool] = None
    is_pinned: Optional[bool] = None
    is_conversation_blocked: Optional[bool] = None

    @field_validator("nickname", "custom_background")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if isinstance(v, str) else v
