"""Base models and mixins for database models"""

from sqlalchemy import Column, DateTime, Integer
from sqlalchemy.orm import DeclarativeBase, declared_attr
from sqlalchemy.sql import func


# Create declarative base
class Base(DeclarativeBase):
    pass


class IntegerIdModel:
    """Mixin for adding an auto-increment integer primary key"""

    @declared_attr
    def id(cls):
        return Column(Integer, primary_key=True, autoincrement=True)


class TimestampedModel:
    """Mixin for adding created_at and updated_at timestamps"""

    @declared_attr
    def created_at(cls):
        return Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
        )

    @declared_attr
    def updated_at(cls):
        return Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now()
        )


class BaseModel(Base, IntegerIdModel):
    """Abstract base model with common functionality"""

    __abstract__ = True

    def __repr__(self):
        return f"<{self.__class__.__name__}(id={self.id!r})>"


__all__ = [
    'Base',
    'BaseModel',
    'IntegerIdModel',
    'TimestampedModel',
]
