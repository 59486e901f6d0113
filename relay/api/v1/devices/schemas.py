"""
Device schemas for request/response validation
"""

from pydantic import Field, field_validator
from typing import Optional
from datetime import datetime

from relay.models import DevicePlatform
from relay.schemas.base import BaseSchema


class DeviceFields(BaseSchema):
    device_id: Optional[str] = Field(None, max_length=255)
    platform: Optional[DevicePlatform] = None
    app_version: Optional[str] = Field(None, max_length=50)
    os_version: Optional[str] = Field(None, max_length=50)
    device_model: Optional[str] = Field(None, max_length=255)
    user_id: Optional[int] = Field(None, gt=0)


class DeviceRegisterRequest(DeviceFields):
    """Register or refresh a device by its push token"""
    device_token: str = Field(..., min_length=1, max_length=500)

    @field_validator("device_token")
    @classmethod
    def strip_token(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Device token is required")
        return v

    model_config = {
        "json_schema_extra": {
            "example": {
                "deviceToken": "fcm-registration-token",
                "deviceId": "8f14e45f-ceea-467f-a8f3-0e2c3a1b4d5e",
                "platform": "android",
                "appVersion": "1.4.0",
                "userId": 1
            }
        }
    }


class DeviceCreateRequest(DeviceRegisterRequest):
    is_active: Optional[bool] = None


class DeviceUpdateRequest(DeviceFields):
    device_token: Optional[str] = Field(None, min_length=1, max_length=500)
    is_active: Optional[bool] = None


class DeviceRead(BaseSchema):
    id: int
    device_token: str
    device_id: Optional[str] = None
    platform: DevicePlatform
    app_version: Optional[str] = None
    os_version: Optional[str] = None
    device_model: Optional[str] = None
    is_active: bool
    last_active_at: Optional[datetime] = None
    user_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
