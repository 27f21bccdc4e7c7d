"""
Notification endpoints

Notifications are only ever created server side; clients read, mark
and delete them, and manage their device push tokens.
"""

from typing import Optional

from fastapi import APIRouter, Query

from app.core.deps import CurrentUserDep, NotificationServiceDep, PageDep
from app.models.notification import NotificationType
from app.schemas.common import ApiResponse
from app.schemas.notification import (
    BulkResult,
    NotificationPage,
    NotificationResponse,
    PushTokenRegister,
    PushTokenResponse,
    PushTokenUnregister,
    UnreadCountResponse,
)

router = APIRouter()


@router.get("", response_model=ApiResponse[NotificationPage])
async def list_notifications(
    user_id: CurrentUserDep,
    service: NotificationServiceDep,
    paging: PageDep,
    read: Optional[bool] = Query(None),
    type: Optional[NotificationType] = Query(None),
):
    page, limit = paging
    result = await service.list_notifications(user_id, page=page, limit=limit, read=read, type=type)
    return ApiResponse[NotificationPage](data=result)


@router.get("/unread-count", response_model=ApiResponse[UnreadCountResponse])
async def unread_count(user_id: CurrentUserDep, service: NotificationServiceDep):
    count = await service.get_unread_count(user_id)
    return ApiResponse[UnreadCountResponse](data=UnreadCountResponse(count=count))


# Static paths are declared before "/{notification_id}" routes
@router.patch("/read-all", response_model=ApiResponse[BulkResult])
async def mark_all_as_read(user_id: CurrentUserDep, service: NotificationServiceDep):
    count = await service.mark_all_as_read(user_id)
    return ApiResponse[BulkResult](data=BulkResult(count=count))


@router.delete("/read", response_model=ApiResponse[BulkResult])
async def delete_all_read(user_id: CurrentUserDep, service: NotificationServiceDep):
    count = await service.delete_all_read(user_id)
    return ApiResponse[BulkResult](data=BulkResult(count=count))


@router.post("/push-tokens", response_model=ApiResponse[PushTokenResponse])
async def register_push_token(
    body: PushTokenRegister,
    user_id: CurrentUserDep,
    service: NotificationServiceDep,
):
    token = await service.register_push_token(
        user_id,
        body.token,
        body.platform,
        device_id=body.device_id,
        device_name=body.device_name,
    )
    return ApiResponse[PushTokenResponse](data=PushTokenResponse.model_validate(token))


@router.delete("/push-tokens", response_model=ApiResponse[BulkResult])
async def unregister_push_token(
    body: PushTokenUnregister,
    user_id: CurrentUserDep,
    service: NotificationServiceDep,
):
    removed = await service.unregister_push_token(body.token, user_id)
    return ApiResponse[BulkResult](data=BulkResult(count=int(removed)))


@router.patch("/{notification_id}/read", response_model=ApiResponse[NotificationResponse])
async def mark_as_read(notification_id: str, user_id: CurrentUserDep, service: NotificationServiceDep):
    notification = await service.mark_as_read(notification_id, user_id)
    return ApiResponse[NotificationResponse](data=NotificationResponse.model_validate(notification))


@router.delete("/{notification_id}", response_model=ApiResponse[BulkResult])
async def delete_notification(notification_id: str, user_id: CurrentUserDep, service: NotificationServiceDep):
    await service.delete_notification(notification_id, user_id)
    return ApiResponse[BulkResult](data=BulkResult(count=1))
