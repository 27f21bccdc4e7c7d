"""
Conversation and message endpoints
"""

from typing import Optional

from fastapi import APIRouter, Query, status

from app.core.deps import (
    ConversationServiceDep,
    CurrentUserDep,
    MessagePageDep,
    MessageServiceDep,
    PageDep,
)
from app.models.conversation import ConversationType
from app.schemas.common import ApiResponse, Page
from app.schemas.conversation import (
    ConversationView,
    GroupConversationCreate,
    GroupConversationView,
    MemberResponse,
    MemberSettingsUpdate,
    PrivateConversationCreate,
)
from app.schemas.message import MessageResponse, ReactionRequest, SendMessageRequest

router = APIRouter()


@router.get("", response_model=ApiResponse[Page[ConversationView]])
async def list_conversations(
    user_id: CurrentUserDep,
    service: MessageServiceDep,
    paging: PageDep,
    type: Optional[ConversationType] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
):
    page, limit = paging
    result = await service.get_user_conversations(user_id, page, limit, conversation_type=type, search=search)
    return ApiResponse[Page[ConversationView]](data=result)


@router.post("/private", response_model=ApiResponse[ConversationView])
async def create_private_conversation(
    body: PrivateConversationCreate,
    user_id: CurrentUserDep,
    service: ConversationServiceDep,
):
    view = await service.ensure_private_conversation(user_id, body.user_id)
    return ApiResponse[ConversationView](data=view)


@router.post("/group", response_model=ApiResponse[GroupConversationView], status_code=status.HTTP_201_CREATED)
async def create_group_conversation(
    body: GroupConversationCreate,
    user_id: CurrentUserDep,
    service: ConversationServiceDep,
):
    view = await service.create_group_conversation(user_id, body.name, body.member_ids)
    return ApiResponse[GroupConversationView](data=view)


@router.get("/{conversation_id}/messages", response_model=ApiResponse[Page[MessageResponse]])
async def list_messages(
    conversation_id: str,
    user_id: CurrentUserDep,
    service: MessageServiceDep,
    paging: MessagePageDep,
):
    page, limit = paging
    result = await service.get_messages(conversation_id, user_id, page, limit)
    return ApiResponse[Page[MessageResponse]](data=result)


@router.get("/{conversation_id}/messages/sender/{sender_id}", response_model=ApiResponse[Page[MessageResponse]])
async def list_messages_by_sender(
    conversation_id: str,
    sender_id: str,
    user_id: CurrentUserDep,
    service: MessageServiceDep,
    paging: MessagePageDep,
):
    page, limit = paging
    result = await service.get_messages_by_sender(conversation_id, user_id, sender_id, page, limit)
    return ApiResponse[Page[MessageResponse]](data=result)


@router.post(
    "/{conversation_id}/messages",
    response_model=ApiResponse[MessageResponse],
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: str,
    body: SendMessageRequest,
    user_id: CurrentUserDep,
    service: MessageServiceDep,
):
    message = await service.send_message(conversation_id, user_id, body)
    return ApiResponse[MessageResponse](data=message)


@router.post("/{conversation_id}/messages/{message_id}/reactions", response_model=ApiResponse[MessageResponse])
async def add_reaction(
    conversation_id: str,
    message_id: int,
    body: ReactionRequest,
    user_id: CurrentUserDep,
    service: MessageServiceDep,
):
    message = await service.add_or_update_reaction(conversation_id, user_id, message_id, body.type)
    return ApiResponse[MessageResponse](data=message)


@router.delete("/{conversation_id}/messages/{message_id}/reactions", response_model=ApiResponse[MessageResponse])
async def remove_reaction(
    conversation_id: str,
    message_id: int,
    user_id: CurrentUserDep,
    service: MessageServiceDep,
):
    message = await service.remove_reaction(conversation_id, user_id, message_id)
    return ApiResponse[MessageResponse](data=message)


@router.patch("/{conversation_id}/settings", response_model=ApiResponse[MemberResponse])
async def update_member_settings(
    conversation_id: str,
    body: MemberSettingsUpdate,
    user_id: CurrentUserDep,
    service: MessageServiceDep,
):
    member = await service.update_member_settings(conversation_id, user_id, body)
    return ApiResponse[MemberResponse](data=member)
