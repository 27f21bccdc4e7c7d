"""
Notification Schemas
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import Field

from app.models.notification import NotificationType, PushPlatform
from app.schemas.common import CamelModel


class NotificationResponse(CamelModel):
    id: str
    user_id: str
    from_user_id: Optional[str] = None
    type: NotificationType
    title: str
    body: str
    data: dict[str, Any] = {}
    read: bool
    read_at: Optional[datetime] = None
    created_at: datetime


class NotificationPage(CamelModel):
    items: List[NotificationResponse]
    total: int
    page: int
    total_pages: int
    unread_count: int


class UnreadCountResponse(CamelModel):
    count: int


class BulkResult(CamelModel):
    count: int


class PushTokenRegister(CamelModel):
    token: str = Field(min_length=1, max_length=512)
    platform: PushPlatform
    device_id: Optional[str] = None
    device_name: Optional[str] = Field(default=None, max_length=200)


class PushTokenUnregister(CamelModel):
    token: str = Field(min_length=1, max_length=512)


class PushTokenResponse(CamelModel):
    id: int
    user_id: str
    token: str
    platform: PushPlatform
    device_id: Optional[str] = None
    device_name: Optional[str] = None
    active: bool
