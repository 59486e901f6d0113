"""
Notification schemas for request/response validation
"""

from pydantic import Field
from typing import Any, Dict, Literal, Optional
from datetime import datetime

from relay.models import NotificationStatus
from relay.schemas.base import BaseSchema


class DispatchRequest(BaseSchema):
    """Fan-out request: one queue message per target device"""
    title: str = Field(..., min_length=1, max_length=255)
    body: str = Field(..., min_length=1)
    data: Optional[Dict[str, Any]] = None
    priority: Optional[Literal["normal", "high"]] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "title": "Order shipped",
                "body": "Your order #1042 is on its way",
                "data": {"orderId": 1042, "tracking": True},
                "priority": "high"
            }
        }
    }


class CreateNotificationRequest(BaseSchema):
    """Recorded notification for one user device"""
    message: str = Field(..., min_length=1)
    user_id: int = Field(..., gt=0)
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    device_id: Optional[int] = Field(None, gt=0)
    data: Optional[Dict[str, Any]] = None
    notification_type: Optional[str] = Field(None, max_length=100)


class NotificationRead(BaseSchema):
    id: int
    user_id: int
    device_id: Optional[int] = None
    device_token: str
    title: str
    body: str
    data: Optional[Dict[str, Any]] = None
    notification_type: Optional[str] = None
    status: NotificationStatus
    fcm_message_id: Optional[str] = None
    fcm_error_code: Optional[str] = None
    fcm_error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class DeviceDispatchRead(BaseSchema):
    device_id: int
    device_token: str
    platform: str
    identifier: str
    queued: bool
    error: Optional[str] = None
