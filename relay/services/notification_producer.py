"""
Notification producer
Resolves target devices and publishes one dispatch message per device
onto the notification queue
"""

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from relay.core.config import Settings
from relay.core.exceptions import (
    DeviceNotFoundException,
    NoActiveDevicesException,
    NoActiveDevicesForUserException,
    TransportException,
    UserNotFoundException,
    ValidationException,
)
from relay.core.monitoring import messages_published
from relay.core.rabbitmq import QueueTransport
from relay.models import Device, Notification, User
from relay.schemas.messages import DispatchMessage
from relay.services.device_service import DeviceService
from relay.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

QUEUE_PUBLISH_FAILED = "queue/publish-failed"


def generate_identifier() -> str:
    """Job identifier carried by every dispatch message: fcm-msg-<16 hex chars>"""
    seed = f"{time.time_ns()}-{secrets.token_hex(8)}".encode()
    return f"fcm-msg-{hashlib.sha256(seed).hexdigest()[:16]}"


@dataclass
class DeviceDispatchResult:
    device_id: int
    device_token: str
    platform: str
    identifier: str
    queued: bool
    error: Optional[str] = None


@dataclass
class DispatchReport:
    title: str
    body: str
    results: List[DeviceDispatchResult] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_devices(self) -> int:
        return len(self.results)

    @property
    def queued_count(self) -> int:
        return sum(1 for r in self.results if r.queued)

    @property
    def failed_count(self) -> int:
        return self.total_devices - self.queued_count


class NotificationProducer:
    """
    Turns dispatch requests into queue messages.

    Uses the caller's session for directory lookups and the shared transport
    for publishing; nothing is retained between calls.
    """

    def __init__(self, db: AsyncSession, transport: QueueTransport, settings: Settings):
        self.db = db
        self.transport = transport
        self.settings = settings
        self.devices = DeviceService(db)

    @staticmethod
    def _require_title_and_body(title: Optional[str], body: Optional[str]) -> None:
        if not title or not title.strip() or not body or not body.strip():
            raise ValidationException("Title and body are required")

    def _build_message(
        self,
        device: Device,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]],
        priority: Optional[str],
        notification_id: Optional[int] = None,
    ) -> DispatchMessage:
        return DispatchMessage(
            user_id=device.user_id if self.settings.DEVICE_OWNERSHIP_ENABLED else None,
            device_id=device.id,
            device_token=device.device_token,
            title=title,
            body=body,
            data=data or {},
            priority=priority or "normal",
            identifier=generate_identifier(),
            notification_id=notification_id,
        )

    async def _publish(self, message: DispatchMessage) -> bool:
        queued = await self.transport.publish(self.settings.NOTIFICATION_QUEUE, message.to_payload())
        messages_published.labels(outcome="queued" if queued else "nacked").inc()
        return queued

    async def _fan_out(
        self,
        devices: List[Device],
        title: str,
        body: str,
        data: Optional[Dict[str, Any]],
        priority: Optional[str],
    ) -> DispatchReport:
        report = DispatchReport(title=title, body=body)

        for device in devices:
            message = self._build_message(device, title, body, data, priority)
            result = DeviceDispatchResult(
                device_id=device.id,
                device_token=device.device_token,
                platform=device.platform.value,
                identifier=message.identifier,
                queued=False,
            )
            try:
                result.queued = await self._publish(message)
                if not result.queued:
                    result.error = "Broker rejected the message"
            except TransportException as e:
                # One unreachable publish must not stop the others
                messages_published.labels(outcome="failed").inc()
                result.error = e.detail
                logger.error(f"Failed to queue notification for device {device.id}: {e.detail}")
            report.results.append(result)

        if report.queued_count == 0:
            raise TransportException(f"Failed to queue notification to any of {report.total_devices} device(s)")

        logger.info(
            f"Queued notification '{title}' to {report.queued_count}/{report.total_devices} device(s)"
        )
        return report

    async def dispatch_to_all(
        self,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
        priority: Optional[str] = None,
    ) -> DispatchReport:
        """Queue one message for every active device"""
        self._require_title_and_body(title, body)

        devices = await self.devices.list_active_devices()
        if not devices:
            raise NoActiveDevicesException()

        return await self._fan_out(devices, title, body, data, priority)

    async def dispatch_to_user(
        self,
        user_id: int,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
        priority: Optional[str] = None,
    ) -> DispatchReport:
        """Queue one message for every active device the user owns"""
        if not self.settings.DEVICE_OWNERSHIP_ENABLED:
            raise ValidationException("Device ownership is disabled")
        self._require_title_and_body(title, body)

        if await self.db.get(User, user_id) is None:
            raise UserNotFoundException(user_id)

        devices = await self.devices.list_user_devices(user_id, active_only=True)
        if not devices:
            raise NoActiveDevicesForUserException(user_id)

        return await self._fan_out(devices, title, body, data, priority)

    async def create_and_queue(
        self,
        user_id: int,
        message: str,
        title: Optional[str] = None,
        device_id: Optional[int] = None,
        data: Optional[Dict[str, Any]] = None,
        notification_type: Optional[str] = None,
    ) -> Notification:
        """
        Record a pending notification for one of the user's devices and queue it.

        An explicit device must belong to the user and be active; otherwise the
        user's most recently active device is used.
        """
        if not message or not message.strip():
            raise ValidationException("Message is required")
        if not user_id:
            raise ValidationException("UserId is required")

        if await self.db.get(User, user_id) is None:
            raise UserNotFoundException(user_id)

        if device_id is not None:
            device = await self.db.get(Device, device_id)
            if device is None or device.user_id != user_id or not device.is_active:
                raise DeviceNotFoundException(
                    f"Device with ID {device_id} not found or inactive for user {user_id}"
                )
        else:
            device = await self.devices.most_recent_active_device(user_id)
            if device is None:
                raise NoActiveDevicesForUserException(user_id)

        notifications = NotificationService(self.db)
        notification = await notifications.create_pending(
            user_id=user_id,
            device=device,
            title=title or self.settings.DEFAULT_NOTIFICATION_TITLE,
            body=message,
            data=data,
            notification_type=notification_type or self.settings.DEFAULT_NOTIFICATION_TYPE,
        )

        dispatch = self._build_message(
            device,
            notification.title,
            notification.body,
            notification.data,
            "normal",
            notification_id=notification.id,
        )
        try:
            queued = await self._publish(dispatch)
        except TransportException as e:
            messages_published.labels(outcome="failed").inc()
            await notifications.mark_failed(notification.id, QUEUE_PUBLISH_FAILED, e.detail)
            raise
        if not queued:
            await notifications.mark_failed(notification.id, QUEUE_PUBLISH_FAILED, "Broker rejected the message")
            raise TransportException("Broker rejected the notification message")

        logger.info(f"Notification {notification.id} queued for device {device.id}")
        return notification
