"""FCM job model: one append-only row per successful gateway send"""

from sqlalchemy import Column, String, Integer, ForeignKey, DateTime, Index
from sqlalchemy.orm import relationship

from .base import BaseModel, TimestampedModel


class FcmJob(BaseModel, TimestampedModel):
    __tablename__ = "fcm_jobs"

    device_id = Column(Integer, ForeignKey("devices.id", ondelete="CASCADE"), nullable=False)
    identifier = Column(String(255), nullable=True)
    message_id = Column(String(255), nullable=True)
    deliver_at = Column(DateTime(timezone=True), nullable=True)

    device = relationship("Device", back_populates="fcm_jobs")

    __table_args__ = (
        Index("idx_fcm_jobs_device_id", "device_id"),
        Index("idx_fcm_jobs_deliver_at", "deliver_at"),
        Index("idx_fcm_jobs_message_id", "message_id"),
    )
