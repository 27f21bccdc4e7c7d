from app.crud.conversation import ConversationCRUD, MemberCRUD
from app.crud.message import MessageCRUD

__all__ = ["ConversationCRUD", "MemberCRUD", "MessageCRUD"]
