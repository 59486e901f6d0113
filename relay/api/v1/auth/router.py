"""
Authentication router
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from relay.core.config import Settings
from relay.core.database import get_db
from relay.schemas.base import envelope
from relay.services.user_service import UserService
from relay.utils.dependencies import get_app_settings
from .schemas import LoginRequest

router = APIRouter()


@router.post("/auth/login")
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings)
):
    """Exchange email and password for a bearer token"""
    token = await UserService(db).login(payload.email, payload.password, settings)
    return envelope({"token": token}, "Login successful")
