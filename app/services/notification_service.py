"""
Notification Service

The database is the source of truth; sockets serve users with the app
open; push serves everyone else. "message" notifications are stored
already read and expire after a short TTL.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.errors import NotFoundError
from app.core.logging import get_logger
from app.core.time import utcnow
from app.models.notification import Notification, NotificationType, PushPlatform, PushToken
from app.schemas.common import total_pages
from app.schemas.notification import NotificationPage, NotificationResponse
from app.services.interfaces import Broadcaster, PresenceQuery, PushProvider, PushResult

logger = get_logger(__name__)

EVENT_NEW = "notification:new"
EVENT_UNREAD_COUNT = "notification:unread_count"

# Stored and pushed lengths; keeps a push well under the FCM 4 KB payload cap
TITLE_MAX_LENGTH = 200
BODY_MAX_LENGTH = 500


def not_expired(now: datetime):
    return (Notification.expires_at.is_(None)) | (Notification.expires_at > now)


class NotificationService:
    def __init__(
        self,
        session: AsyncSession,
        broadcaster: Broadcaster,
        presence: PresenceQuery,
        push: PushProvider,
    ):
        self.session = session
        self.broadcaster = broadcaster
        self.presence = presence
        self.push = push

    async def create_notification(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        body: str,
        data: Optional[dict[str, Any]] = None,
        from_user_id: Optional[str] = None,
        send_push: bool = True,
    ) -> Notification:
        now = utcnow()
        is_message = type == NotificationType.MESSAGE
        title = title[:TITLE_MAX_LENGTH]
        body = body[:BODY_MAX_LENGTH]
        notification = Notification(
            user_id=user_id,
            from_user_id=from_user_id,
            type=type.value,
            title=title,
            body=body,
            data=data or {},
            read=is_message,
            read_at=now if is_message else None,
            expires_at=now + timedelta(seconds=settings.message_notification_ttl_seconds) if is_message else None,
        )
        self.session.add(notification)
        await self.session.commit()

        if send_push:
            push_data = {"notificationId": notification.id, "type": type.value, **(data or {})}
            try:
                await self.send_push_to_user(user_id, title, body, push_data)
            except Exception as e:
                logger.error(f"Push for notification {notification.id} failed: {e}")

        try:
            payload = NotificationResponse.model_validate(notification).model_dump(mode="json", by_alias=True)
            await self.broadcaster.emit_to_user(user_id, EVENT_NEW, payload)
            await self.broadcaster.emit_to_user(user_id, EVENT_UNREAD_COUNT, {"count": await self.get_unread_count(user_id)})
        except Exception as e:
            logger.error(f"Socket emit for notification {notification.id} failed: {e}")

        return notification

    async def send_push_to_user(self, user_id: str, title: str, body: str, data: dict[str, Any]) -> int:
        """
        Push to every active device of the user unless they are using the app
        right now. Returns the number of successful deliveries.
        """
        if await self.presence.is_user_active_within_last_minutes(user_id, settings.presence_active_minutes):
            logger.debug(f"User {user_id} is active, skipping push")
            return 0

        result = await self.session.execute(
            select(PushToken).where(PushToken.user_id == user_id, PushToken.active.is_(True))
        )
        tokens = list(result.scalars().all())
        if not tokens:
            return 0

        # FCM data values must be strings
        string_data = {key: str(value) for key, value in data.items()}
        results = await asyncio.gather(
            *(self.push.deliver(t.token, t.platform, title, body, string_data) for t in tokens),
            return_exceptions=True,
        )

        delivered = 0
        dead_ids = []
        for token, outcome in zip(tokens, results):
            if isinstance(outcome, BaseException):
                logger.error(f"Push to token {token.id} raised: {outcome!r}")
            elif outcome == PushResult.OK:
                delivered += 1
            elif outcome == PushResult.PERMANENT_FAILURE:
                dead_ids.append(token.id)

        if dead_ids:
            await self.session.execute(update(PushToken).where(PushToken.id.in_(dead_ids)).values(active=False))
            await self.session.commit()
            logger.info(f"Deactivated {len(dead_ids)} push token(s) of user {user_id}")
        return delivered

    async def list_notifications(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        read: Optional[bool] = None,
        type: Optional[NotificationType] = None,
    ) -> NotificationPage:
        now = utcnow()
        conditions = [Notification.user_id == user_id, not_expired(now)]
        if read is not None:
            conditions.append(Notification.read.is_(read))
        if type is not None:
            conditions.append(Notification.type == type.value)

        stmt = (
            select(Notification)
            .where(*conditions)
            .order_by(Notification.created_at.desc(), Notification.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        items = list((await self.session.execute(stmt)).scalars().all())
        total = (await self.session.execute(select(func.count(Notification.id)).where(*conditions))).scalar_one()

        return NotificationPage(
            items=[NotificationResponse.model_validate(n) for n in items],
            total=total,
            page=page,
            total_pages=total_pages(total, limit),
            unread_count=await self.get_unread_count(user_id),
        )

    async def _get_own(self, notification_id: str, user_id: str) -> Notification:
        result = await self.session.execute(
            select(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotFoundError("Notification not found")
        return notification

    async def mark_as_read(self, notification_id: str, user_id: str) -> Notification:
        notification = await self._get_own(notification_id, user_id)
        if not notification.read:
            notification.read = True
            notification.read_at = utcnow()
            await self.session.commit()
            await self._emit_unread_count(user_id)
        return notification

    async def mark_all_as_read(self, user_id: str) -> int:
        result = await self.session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True, read_at=utcnow())
        )
        await self.session.commit()
        await self._emit_unread_count(user_id)
        return result.rowcount or 0

    async def delete_notification(self, notification_id: str, user_id: str) -> None:
        notification = await self._get_own(notification_id, user_id)
        await self.session.delete(notification)
        await self.session.commit()

    async def delete_all_read(self, user_id: str) -> int:
        result = await self.session.execute(
            delete(Notification).where(Notification.user_id == user_id, Notification.read.is_(True))
        )
        await self.session.commit()
        return result.rowcount or 0

    async def get_unread_count(self, user_id: str) -> int:
        result = await self.session.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.read.is_(False),
                not_expired(utcnow()),
            )
        )
        return result.scalar_one()

    async def _emit_unread_count(self, user_id: str) -> None:
        try:
            count = await self.get_unread_count(user_id)
            await self.broadcaster.emit_to_user(user_id, EVENT_UNREAD_COUNT, {"count": count})
        except Exception as e:
            logger.error(f"Unread count emit for {user_id} failed: {e}")

    async def register_push_token(
        self,
        user_id: str,
        token: str,
        platform: PushPlatform,
        device_id: Optional[str] = None,
        device_name: Optional[str] = None,
    ) -> PushToken:
        """A token moves to whoever registers it last and becomes active again"""
        result = await self.session.execute(select(PushToken).where(PushToken.token == token))
        push_token = result.scalar_one_or_none()
        if push_token is None:
            push_token = PushToken(token=token)
            self.session.add(push_token)
        elif push_token.user_id != user_id:
            logger.info(f"Push token {push_token.id} re-assigned to user {user_id}")

        push_token.user_id = user_id
        push_token.platform = platform.value
        push_token.device_id = device_id
        push_token.device_name = device_name
        push_token.active = True
        await self.session.commit()
        return push_token

    async def unregister_push_token(self, token: str, user_id: str) -> bool:
        result = await self.session.execute(
            update(PushToken).where(PushToken.token == token, PushToken.user_id == user_id).values(active=False)
        )
        await self.session.commit()
        return bool(result.rowcount)

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        result = await self.session.execute(
            # Core delete: stored timestamps may come back naive, so no in-session evaluation
            Notification.__table__.delete().where(
                Notification.expires_at.is_not(None),
                Notification.expires_at <= (now or utcnow()),
            )
        )
        await self.session.commit()
        return result.rowcount or 0


class NotificationDispatcher:
    """
    NotificationSink for the messaging core.

    Runs outside the request, so every call opens its own session and
    nothing it does can fail the send that triggered it.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broadcaster: Broadcaster,
        presence: PresenceQuery,
        push: PushProvider,
    ):
        self.session_factory = session_factory
        self.broadcaster = broadcaster
        self.presence = presence
        self.push = push

    async def message_received(
        self,
        *,
        recipient_id: str,
        is_muted: bool,
        sender_id: str,
        sender_name: str,
        conversation_id: str,
        message_id: int,
        preview: str,
    ) -> None:
        try:
            async with self.session_factory() as session:
                service = NotificationService(session, self.broadcaster, self.presence, self.push)
                await service.create_notification(
                    recipient_id,
                    NotificationType.MESSAGE,
                    title=sender_name,
                    body=preview,
                    data={
                        "conversationId": conversation_id,
                        "messageId": str(message_id),
                        "senderId": sender_id,
                    },
                    from_user_id=sender_id,
                    # Muted conversations still get the record and the socket event
                    send_push=not is_muted,
                )
        except Exception as e:
            logger.error(f"Message notification for {recipient_id} failed: {e}", exc_info=True)


async def purge_expired_loop(
    session_factory: async_sessionmaker[AsyncSession],
    interval_seconds: float,
    broadcaster: Broadcaster,
    presence: PresenceQuery,
    push: PushProvider,
) -> None:
    """Periodic TTL cleanup for message notifications; cancelled on shutdown"""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            async with session_factory() as session:
                purged = await NotificationService(session, broadcaster, presence, push).purge_expired()
            if purged:
                logger.debug(f"Purged {purged} expired notification(s)")
        except Exception as e:
            logger.error(f"Notification purge failed: {e}")
