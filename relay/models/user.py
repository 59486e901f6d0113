"""
User model
Users own devices and receive notifications
"""

from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship

from .base import BaseModel, TimestampedModel


class User(BaseModel, TimestampedModel):
    __tablename__ = "users"

    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(20), unique=True, nullable=True, index=True)
    password_hash = Column(String(255), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    devices = relationship("Device", back_populates="user", passive_deletes=True)
