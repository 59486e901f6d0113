"""User management endpoints"""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from relay.core.database import get_db
from relay.schemas.base import envelope
from relay.services.device_service import DeviceService
from relay.services.user_service import UserService
from relay.utils.dependencies import Pagination
from relay.api.v1.devices.schemas import DeviceRead
from .schemas import UserCreateRequest, UserDetail, UserRead, UserUpdateRequest

router = APIRouter()


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreateRequest, db: AsyncSession = Depends(get_db)):
    user = await UserService(db).create_user(payload.model_dump())
    return envelope(UserRead.model_validate(user).dump(), "User created successfully")


@router.get("/users")
async def list_users(
    page: Pagination = Depends(),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    search: Optional[str] = Query(None, max_length=255),
    db: AsyncSession = Depends(get_db)
):
    result = await UserService(db).list_users(
        limit=page.limit,
        offset=page.offset,
        is_active=is_active,
        search=search,
    )
    return envelope({
        "users": [UserRead.model_validate(u).dump() for u in result["items"]],
        "total": result["total"],
        "limit": result["limit"],
        "offset": result["offset"],
    })


@router.get("/users/{user_id}")
async def get_user(user_id: int, request: Request, db: AsyncSession = Depends(get_db)):
    """User with their devices when device ownership is enabled"""
    user = await UserService(db).get_user(user_id)
    detail = UserDetail.model_validate(UserRead.model_validate(user).model_dump())
    if request.app.state.settings.DEVICE_OWNERSHIP_ENABLED:
        devices = await DeviceService(db).list_user_devices(user_id)
        detail.devices = [DeviceRead.model_validate(d) for d in devices]
    return envelope(detail.dump())


@router.put("/users/{user_id}")
async def update_user(user_id: int, payload: UserUpdateRequest, db: AsyncSession = Depends(get_db)):
    user = await UserService(db).update_user(user_id, payload.model_dump(exclude_unset=True))
    return envelope(UserRead.model_validate(user).dump(), "User updated successfully")


@router.delete("/users/{user_id}")
async def delete_user(user_id: int, db: AsyncSession = Depends(get_db)):
    await UserService(db).delete_user(user_id)
    return envelope(message="User deleted successfully")
