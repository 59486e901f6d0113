"""
User schemas for request/response validation
"""

from pydantic import EmailStr, Field
from typing import List, Optional
from datetime import datetime

from relay.schemas.base import BaseSchema
from relay.api.v1.devices.schemas import DeviceRead


class UserCreateRequest(BaseSchema):
    """User creation request"""
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: Optional[str] = Field(None, min_length=1, max_length=20)
    password: Optional[str] = Field(None, min_length=6, max_length=128)
    is_active: Optional[bool] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Asha Verma",
                "email": "asha@example.com",
                "phone": "+919876543210",
                "password": "s3cret-pass"
            }
        }
    }


class UserUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, min_length=1, max_length=20)
    password: Optional[str] = Field(None, min_length=6, max_length=128)
    is_active: Optional[bool] = None


class UserRead(BaseSchema):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class UserDetail(UserRead):
    devices: List[DeviceRead] = []
