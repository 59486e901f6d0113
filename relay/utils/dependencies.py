"""
Common dependencies for FastAPI
Process-wide resources are built by the lifespan and read from app.state
"""

from fastapi import Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from relay.core.config import Settings
from relay.core.database import get_db
from relay.core.rabbitmq import QueueTransport
from relay.services.notification_producer import NotificationProducer

MAX_PAGE_SIZE = 200


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_transport(request: Request) -> QueueTransport:
    return request.app.state.transport


class Pagination:
    """limit/offset query parameters"""

    def __init__(
        self,
        limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE, description="Maximum items to return"),
        offset: int = Query(0, ge=0, description="Items to skip"),
    ):
        self.limit = limit
        self.offset = offset


def get_producer(
    db: AsyncSession = Depends(get_db),
    transport: QueueTransport = Depends(get_transport),
    settings: Settings = Depends(get_app_settings),
) -> NotificationProducer:
    return NotificationProducer(db, transport, settings)
