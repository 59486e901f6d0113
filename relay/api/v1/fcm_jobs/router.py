"""FCM job record endpoints (read-only)"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from relay.core.database import get_db
from relay.schemas.base import envelope
from relay.services.fcm_job_service import FcmJobService
from relay.utils.dependencies import Pagination
from .schemas import FcmJobRead

router = APIRouter()


@router.get("/fcm-jobs")
async def list_fcm_jobs(
    page: Pagination = Depends(),
    device_id: Optional[int] = Query(None, alias="deviceId", gt=0),
    message_id: Optional[str] = Query(None, alias="messageId", max_length=255),
    db: AsyncSession = Depends(get_db)
):
    result = await FcmJobService(db).list_jobs(
        device_id=device_id,
        message_id=message_id,
        limit=page.limit,
        offset=page.offset,
    )
    return envelope({
        "jobs": [FcmJobRead.model_validate(j).dump() for j in result["items"]],
        "total": result["total"],
        "limit": result["limit"],
        "offset": result["offset"],
    })


@router.get("/fcm-jobs/{job_id}")
async def get_fcm_job(job_id: int, db: AsyncSession = Depends(get_db)):
    job = await FcmJobService(db).get_fcm_job(job_id)
    return envelope(FcmJobRead.model_validate(job).dump())
