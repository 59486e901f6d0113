"""API v1 routes aggregation"""

from fastapi import APIRouter

from relay.core.config import Settings
from .auth.router import router as auth_router
from .devices.router import router as devices_router
from .fcm_jobs.router import router as fcm_jobs_router
from .notifications.router import history_router as notification_history_router
from .notifications.router import router as notifications_router
from .users.router import router as users_router


def build_api_router(settings: Settings) -> APIRouter:
    """Routes are mounted at the root; optional modules follow their feature flags"""
    api_router = APIRouter()

    api_router.include_router(auth_router, tags=["Authentication"])
    api_router.include_router(users_router, tags=["Users"])
    api_router.include_router(devices_router, tags=["Devices"])
    api_router.include_router(notifications_router, tags=["Notifications"])
    if settings.NOTIFICATION_HISTORY_ENABLED:
        api_router.include_router(notification_history_router, tags=["Notifications"])
    api_router.include_router(fcm_jobs_router, tags=["FCM Jobs"])

    return api_router
