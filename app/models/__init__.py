from app.models.base import Base
from app.models.conversation import Conversation, ConversationMember, ConversationType, MemberRole
from app.models.message import Message, MessageReaction, MessageType, ReactionType
from app.models.notification import Notification, NotificationType, PushPlatform, PushToken
from app.models.user import User, UserBlock

__all__ = [
    "Base",
    "User",
    "UserBlock",
    "Conversation",
    "ConversationMember",
    "ConversationType",
    "MemberRole",
    "Message",
    "MessageReaction",
    "MessageType",
    "ReactionType",
    "Notification",
    "NotificationType",
    "PushPlatform",
    "PushToken",
]
