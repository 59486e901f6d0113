"""
Security utilities for authentication
Handles JWT tokens, password hashing, and the bearer-token dependency
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import Settings
from .exceptions import UnauthorizedException

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Security scheme; missing headers are reported by get_current_user
security = HTTPBearer(auto_error=False)


class SecurityUtils:
    """Security utility functions"""

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        """Verify password against hash"""
        return pwd_context.verify(plain_password, hashed_password)

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash password using bcrypt"""
        return pwd_context.hash(password)

    @staticmethod
    def create_access_token(data: Dict[str, Any], settings: Settings) -> str:
        """Create JWT access token"""
        to_encode = data.copy()
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        to_encode.update({"exp": expire, "type": "access"})
        return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

    @staticmethod
    def decode_token(token: str, settings: Settings) -> Dict[str, Any]:
        """Decode and validate JWT token"""
        try:
            return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except ExpiredSignatureError:
            raise UnauthorizedException("Authentication token has expired", error_code="TOKEN_EXPIRED")
        except JWTError:
            raise UnauthorizedException("Invalid authentication token", error_code="INVALID_TOKEN")


# Dependency to get current user from token
async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Dict[str, Any]]:
    """
    Extract and validate the caller from a bearer token.

    Returns None without checking anything when AUTH_REQUIRED is off.
    """
    settings: Settings = request.app.state.settings
    if not settings.AUTH_REQUIRED:
        return None

    if credentials is None or not credentials.credentials:
        raise UnauthorizedException()

    payload = SecurityUtils.decode_token(credentials.credentials, settings)
    if payload.get("type") != "access":
        raise UnauthorizedException("Invalid token type", error_code="INVALID_TOKEN")

    return {
        "id": payload.get("sub"),
        "email": payload.get("email"),
    }
