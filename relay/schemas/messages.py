"""
Queue message schemas
Both shapes are versioned and serialized with camelCase keys
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Any, Dict, Literal, Optional
from datetime import datetime, timezone

MESSAGE_VERSION = 1

DeliveryStatus = Literal["sent", "failed", "invalid_token"]


class QueueMessage(BaseModel):
    """Common configuration for messages carried on the queue"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    version: Literal[1] = MESSAGE_VERSION

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready dict with camelCase keys; absent optionals are omitted"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DispatchMessage(QueueMessage):
    """One push notification for one device"""

    user_id: Optional[int] = None
    device_id: int
    device_token: str = Field(..., max_length=500)
    title: str
    body: str
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: Literal["normal", "high"] = "normal"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    identifier: Optional[str] = None
    notification_id: Optional[int] = None

    @field_validator("device_token", "title", "body")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v


class DoneEvent(QueueMessage):
    """Delivery outcome published to the done exchange"""

    device_id: int
    user_id: Optional[int] = None
    notification_id: Optional[int] = None
    identifier: Optional[str] = None
    status: DeliveryStatus
    message_id: Optional[str] = None
    fcm_error_code: Optional[str] = None
    fcm_error_message: Optional[str] = None
    deliver_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None

    @property
    def routing_key(self) -> str:
        return done_routing_key(self.status)


def done_routing_key(status: str) -> str:
    return f"notification.done.{status}"
