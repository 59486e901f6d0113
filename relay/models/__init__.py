"""Models package initialization"""

from .base import Base
from .user import User
from .device import Device, DevicePlatform
from .notification import Notification, NotificationStatus
from .fcm_job import FcmJob

__all__ = [
    "Base",
    "User",
    "Device",
    "DevicePlatform",
    "Notification",
    "NotificationStatus",
    "FcmJob",
]
