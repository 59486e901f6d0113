"""
Notification endpoints
Dispatch routes publish to the queue; history routes read recorded notifications
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, Optional

from relay.core.database import get_db
from relay.core.security import get_current_user
from relay.models import NotificationStatus
from relay.schemas.base import envelope
from relay.services.notification_producer import DispatchReport, NotificationProducer
from relay.services.notification_service import NotificationService
from relay.utils.dependencies import Pagination, get_producer
from .schemas import CreateNotificationRequest, DeviceDispatchRead, DispatchRequest, NotificationRead

# Fan-out dispatch, always mounted
router = APIRouter()

# Recorded notifications, mounted when notification history is enabled
history_router = APIRouter()


def _report_body(report: DispatchReport) -> Dict[str, Any]:
    return {
        "title": report.title,
        "body": report.body,
        "totalDevices": report.total_devices,
        "queued": report.queued_count,
        "failed": report.failed_count,
        "devices": [DeviceDispatchRead.model_validate(r).dump() for r in report.results],
        "timestamp": report.timestamp.isoformat(),
    }


def _report_message(report: DispatchReport) -> str:
    return f"Notification queued successfully to {report.queued_count} device(s)"


@router.post("/notifications/all", status_code=status.HTTP_202_ACCEPTED)
async def send_to_all_devices(
    payload: DispatchRequest,
    producer: NotificationProducer = Depends(get_producer),
    current_user: Optional[dict] = Depends(get_current_user)
):
    """Queue a notification for every active device"""
    report = await producer.dispatch_to_all(payload.title, payload.body, payload.data, payload.priority)
    return envelope(_report_body(report), _report_message(report))


@router.post("/notifications/user/{user_id}", status_code=status.HTTP_202_ACCEPTED)
async def send_to_user_devices(
    user_id: int,
    payload: DispatchRequest,
    producer: NotificationProducer = Depends(get_producer),
    current_user: Optional[dict] = Depends(get_current_user)
):
    """Queue a notification for every active device of one user"""
    report = await producer.dispatch_to_user(user_id, payload.title, payload.body, payload.data, payload.priority)
    body = _report_body(report)
    body["userId"] = user_id
    return envelope(body, _report_message(report))


@history_router.post("/create-notification", status_code=status.HTTP_201_CREATED)
async def create_notification(
    payload: CreateNotificationRequest,
    producer: NotificationProducer = Depends(get_producer),
    current_user: Optional[dict] = Depends(get_current_user)
):
    """Record a pending notification for one of the user's devices and queue it"""
    notification = await producer.create_and_queue(
        user_id=payload.user_id,
        message=payload.message,
        title=payload.title,
        device_id=payload.device_id,
        data=payload.data,
        notification_type=payload.notification_type,
    )
    return envelope(
        NotificationRead.model_validate(notification).dump(),
        "Notification created and queued successfully",
    )


@history_router.get("/notifications/user/{user_id}")
async def list_user_notifications(
    user_id: int,
    page: Pagination = Depends(),
    notification_status: Optional[NotificationStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db)
):
    result = await NotificationService(db).list_user_notifications(
        user_id,
        limit=page.limit,
        offset=page.offset,
        status=notification_status.value if notification_status else None,
    )
    return envelope({
        "notifications": [NotificationRead.model_validate(n).dump() for n in result["items"]],
        "total": result["total"],
        "limit": result["limit"],
        "offset": result["offset"],
    })


@history_router.get("/notifications/{notification_id}")
async def get_notification(notification_id: int, db: AsyncSession = Depends(get_db)):
    notification = await NotificationService(db).get_notification(notification_id)
    return envelope(NotificationRead.model_validate(notification).dump())


@history_router.put("/notifications/{notification_id}/read")
async def mark_notification_read(notification_id: int, db: AsyncSession = Depends(get_db)):
    notification = await NotificationService(db).mark_read(notification_id)
    return envelope(NotificationRead.model_validate(notification).dump(), "Notification marked as read")
