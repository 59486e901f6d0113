"""
Device model
One row per push token; re-registering a token updates the same row
"""

from sqlalchemy import Column, String, Boolean, Integer, ForeignKey, DateTime, Enum
from sqlalchemy.orm import relationship
import enum

from .base import BaseModel, TimestampedModel


class DevicePlatform(str, enum.Enum):
    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


class Device(BaseModel, TimestampedModel):
    __tablename__ = "devices"

    device_token = Column(String(500), unique=True, nullable=False, index=True)
    device_id = Column(String(255), nullable=True)  # client-side identifier
    platform = Column(
        Enum(DevicePlatform, name="device_platform", values_callable=lambda e: [m.value for m in e]),
        default=DevicePlatform.ANDROID,
        nullable=False,
        index=True,
    )
    app_version = Column(String(50))
    os_version = Column(String(50))
    device_model = Column(String(255))

    is_active = Column(Boolean, default=True, nullable=False, index=True)
    last_active_at = Column(DateTime(timezone=True), nullable=True)

    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Relationships
    user = relationship("User", back_populates="devices")
    fcm_jobs = relationship("FcmJob", back_populates="device", passive_deletes=True)
