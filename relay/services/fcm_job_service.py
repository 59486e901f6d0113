"""FCM job records: append-only log of successful gateway sends"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from relay.core.exceptions import NotFoundException, ValidationException
from relay.models import FcmJob
from relay.utils.pagination import paginate


class FcmJobService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_fcm_job(
        self,
        device_id: int,
        identifier: Optional[str] = None,
        message_id: Optional[str] = None,
        deliver_at: Optional[datetime] = None,
    ) -> FcmJob:
        """Insert a job row; identical input always produces a new row"""
        if not device_id:
            raise ValidationException("Device ID is required")

        job = FcmJob(
            device_id=device_id,
            identifier=identifier,
            message_id=message_id,
            deliver_at=deliver_at or datetime.now(timezone.utc),
        )
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)
        return job

    async def get_fcm_job(self, job_id: int) -> FcmJob:
        job = await self.db.get(FcmJob, job_id)
        if job is None:
            raise NotFoundException(f"FCM job with ID {job_id} not found", error_code="FCM_JOB_NOT_FOUND")
        return job

    async def list_jobs(
        self,
        device_id: Optional[int] = None,
        message_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        query = select(FcmJob)
        if device_id is not None:
            query = query.where(FcmJob.device_id == device_id)
        if message_id:
            query = query.where(FcmJob.message_id == message_id)
        query = query.order_by(FcmJob.created_at.desc(), FcmJob.id.desc())
        return await paginate(self.db, query, limit=limit, offset=offset)
