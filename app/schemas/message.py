"""
Message Schemas
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from app.models.message import MessageType, ReactionType
from app.schemas.common import CamelModel


class SendMessageRequest(CamelModel):
    type: MessageType
    text: Optional[str] = None
    media_url: Optional[str] = None
    mime_type: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = Field(default=None, ge=0)
    duration: Optional[float] = Field(default=None, ge=0)
    reply_to_message_id: Optional[int] = None


class MessageContent(CamelModel):
    text: Optional[str] = None
    media_url: Optional[str] = None
    mime_type: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    duration: Optional[float] = None


class ReactionResponse(CamelModel):
    user_id: str
    type: ReactionType
    created_at: datetime


class MessageResponse(CamelModel):
    id: int
    conversation_id: str
    sender_id: str
    type: MessageType
    content: MessageContent
    reply_to_message_id: Optional[int] = None
    reactions: List[ReactionResponse] = []
    is_deleted: bool = False
    created_at: datetime
    updated_at: datetime


class ReactionRequest(CamelModel):
    type: ReactionType
