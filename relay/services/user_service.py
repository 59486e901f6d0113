"""
User directory service
Handles user CRUD and password login
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging

from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from relay.core.config import Settings
from relay.core.exceptions import (
    DuplicateResourceException,
    UnauthorizedException,
    UserNotFoundException,
    ValidationException,
)
from relay.core.security import SecurityUtils
from relay.models import User
from relay.utils.pagination import paginate

logger = logging.getLogger(__name__)


class UserService:
    """User management service"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _find(self, **criteria) -> Optional[User]:
        result = await self.db.execute(select(User).filter_by(**criteria))
        return result.scalar_one_or_none()

    async def _ensure_unique(self, email: Optional[str], phone: Optional[str]) -> None:
        if email and await self._find(email=email):
            raise DuplicateResourceException("User", "email")
        if phone and await self._find(phone=phone):
            raise DuplicateResourceException("User", "phone number")

    async def _commit(self) -> None:
        # The unique constraints still win if a concurrent request slipped past the checks
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateResourceException("User", "email or phone number")

    async def create_user(self, data: Dict[str, Any]) -> User:
        """Create a user; the password, when given, is stored as a bcrypt hash"""
        await self._ensure_unique(data.get("email"), data.get("phone"))

        user = User(
            name=data["name"],
            email=data["email"],
            phone=data.get("phone"),
            is_active=data["is_active"] if data.get("is_active") is not None else True,
        )
        if data.get("password"):
            user.password_hash = SecurityUtils.hash_password(data["password"])

        self.db.add(user)
        await self._commit()
        await self.db.refresh(user)
        logger.info(f"Created user {user.id}")
        return user

    async def list_users(
        self,
        limit: int = 50,
        offset: int = 0,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> Dict[str, Any]:
        query = select(User)
        if is_active is not None:
            query = query.where(User.is_active == is_active)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(User.name.like(pattern), User.email.like(pattern), User.phone.like(pattern))
            )
        query = query.order_by(User.created_at.desc(), User.id.desc())
        return await paginate(self.db, query, limit=limit, offset=offset)

    async def get_user(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise UserNotFoundException(user_id)
        return user

    async def update_user(self, user_id: int, data: Dict[str, Any]) -> User:
        user = await self.get_user(user_id)

        email = data.get("email")
        phone = data.get("phone")
        await self._ensure_unique(
            email if email and email != user.email else None,
            phone if phone and phone != user.phone else None,
        )

        for key in ("name", "email", "phone", "is_active"):
            if data.get(key) is not None:
                setattr(user, key, data[key])
        if data.get("password"):
            user.password_hash = SecurityUtils.hash_password(data["password"])

        await self._commit()
        await self.db.refresh(user)
        return user

    async def delete_user(self, user_id: int) -> None:
        user = await self.get_user(user_id)
        await self.db.delete(user)
        await self.db.commit()
        logger.info(f"Deleted user {user_id}")

    async def login(self, email: str, password: str, settings: Settings) -> str:
        """
        Authenticate by email and password.

        Returns a signed access token carrying the user's id and email.
        """
        if not email or not password:
            raise ValidationException("Email and password are required")

        user = await self._find(email=email)
        if user is None:
            raise UnauthorizedException("Invalid email or password", error_code="INVALID_CREDENTIALS")
        if not user.is_active:
            raise UnauthorizedException("User account is inactive", error_code="ACCOUNT_INACTIVE")
        if not user.password_hash:
            raise UnauthorizedException("Password not set for this user", error_code="PASSWORD_NOT_SET")
        if not SecurityUtils.verify_password(password, user.password_hash):
            raise UnauthorizedException("Invalid email or password", error_code="INVALID_CREDENTIALS")

        user.last_login_at = datetime.now(timezone.utc)
        await self.db.commit()

        logger.info(f"User {user.id} logged in")
        return SecurityUtils.create_access_token({"sub": str(user.id), "email": user.email}, settings)
