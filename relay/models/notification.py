"""
Notification model
History of notifications created through the API and their delivery status
"""

from sqlalchemy import Column, String, Integer, ForeignKey, JSON, Text, DateTime, Enum, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from typing import Optional
import enum

from .base import BaseModel, TimestampedModel


class NotificationStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    INVALID_TOKEN = "invalid_token"


INVALID_TOKEN_ERROR_CODES = frozenset(
    {"messaging/invalid-registration-token", "messaging/registration-token-not-registered"}
)


class Notification(BaseModel, TimestampedModel):
    __tablename__ = "notifications"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    device_id = Column(Integer, ForeignKey("devices.id", ondelete="SET NULL"), nullable=True)
    device_token = Column(String(500), nullable=False)  # token at send time

    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    data = Column(JSON, default=dict)
    notification_type = Column(String(100), default="general")

    status = Column(
        Enum(NotificationStatus, name="notification_status", values_callable=lambda e: [m.value for m in e]),
        default=NotificationStatus.PENDING,
        nullable=False,
    )
    fcm_message_id = Column(String(255))
    fcm_error_code = Column(String(100))
    fcm_error_message = Column(Text)

    sent_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))
    read_at = Column(DateTime(timezone=True))

    # Relationships
    user = relationship("User")
    device = relationship("Device")

    __table_args__ = (
        Index("idx_notifications_user_id", "user_id"),
        Index("idx_notifications_device_id", "device_id"),
        Index("idx_notifications_status", "status"),
        Index("idx_notifications_type", "notification_type"),
        Index("idx_notifications_created_at", "created_at"),
        Index("idx_notifications_read_at", "read_at"),
    )

    def mark_as_sent(self, fcm_message_id: str) -> None:
        self.status = NotificationStatus.SENT
        self.fcm_message_id = fcm_message_id
        self.sent_at = datetime.now(timezone.utc)

    def mark_as_failed(self, error_code: Optional[str], error_message: Optional[str]) -> None:
        """Invalid or unregistered tokens get their own terminal status"""
        self.fcm_error_code = error_code
        self.fcm_error_message = error_message
        if error_code in INVALID_TOKEN_ERROR_CODES:
            self.status = NotificationStatus.INVALID_TOKEN
        else:
            self.status = NotificationStatus.FAILED

    def mark_as_read(self) -> None:
        self.read_at = datetime.now(timezone.utc)
