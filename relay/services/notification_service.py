"""Notification history: records created by the API and moved to a terminal state by the consumer"""

from typing import Any, Dict, Optional
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from relay.core.exceptions import NotFoundException, ValidationException
from relay.models import Device, Notification, NotificationStatus
from relay.utils.pagination import paginate

logger = logging.getLogger(__name__)


class NotificationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_pending(
        self,
        user_id: int,
        device: Device,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
        notification_type: str = "general",
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            device_id=device.id,
            device_token=device.device_token,
            title=title,
            body=body,
            data=data or {},
            notification_type=notification_type,
            status=NotificationStatus.PENDING,
        )
        self.db.add(notification)
        await self.db.commit()
        await self.db.refresh(notification)
        return notification

    async def get_notification(self, notification_id: int) -> Notification:
        notification = await self.db.get(Notification, notification_id)
        if notification is None:
            raise NotFoundException("Notification not found", error_code="NOTIFICATION_NOT_FOUND")
        return notification

    async def list_user_notifications(
        self,
        user_id: int,
        limit: int = 50,
        offset: int = 0,
        status: Optional[str] = None,
    ) -> Dict[str, Any]:
        query = select(Notification).where(Notification.user_id == user_id)
        if status:
            try:
                query = query.where(Notification.status == NotificationStatus(status))
            except ValueError:
                raise ValidationException(f"Invalid status: {status}")
        query = query.order_by(Notification.created_at.desc(), Notification.id.desc())
        return await paginate(self.db, query, limit=limit, offset=offset)

    async def mark_sent(self, notification_id: int, fcm_message_id: str) -> Optional[Notification]:
        notification = await self.db.get(Notification, notification_id)
        if notification is None:
            logger.warning(f"Notification {notification_id} vanished before it could be marked sent")
            return None
        notification.mark_as_sent(fcm_message_id)
        await self.db.commit()
        return notification

    async def mark_failed(
        self,
        notification_id: int,
        error_code: Optional[str],
        error_message: Optional[str],
    ) -> Optional[Notification]:
        notification = await self.db.get(Notification, notification_id)
        if notification is None:
            logger.warning(f"Notification {notification_id} vanished before it could be marked failed")
            return None
        notification.mark_as_failed(error_code, error_message)
        await self.db.commit()
        return notification

    async def mark_read(self, notification_id: int) -> Notification:
        notification = await self.get_notification(notification_id)
        notification.mark_as_read()
        await self.db.commit()
        await self.db.refresh(notification)
        return notification
