"""Device registration and management endpoints"""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from relay.core.database import get_db
from relay.core.exceptions import UserNotFoundException, ValidationException
from relay.models import DevicePlatform, User
from relay.schemas.base import envelope
from relay.services.device_service import DeviceService
from relay.utils.dependencies import Pagination
from .schemas import DeviceCreateRequest, DeviceRead, DeviceRegisterRequest, DeviceUpdateRequest

router = APIRouter()


async def _check_owner(request: Request, db: AsyncSession, user_id: Optional[int]) -> Optional[int]:
    """Device ownership is only stored when the feature is on; the owner must exist"""
    if not request.app.state.settings.DEVICE_OWNERSHIP_ENABLED:
        return None
    if user_id is not None and await db.get(User, user_id) is None:
        raise UserNotFoundException(user_id)
    return user_id


@router.post("/devices/register")
async def register_device(
    payload: DeviceRegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """Register a device, updating the existing row when the token is known"""
    data = payload.model_dump()
    data["user_id"] = await _check_owner(request, db, payload.user_id)

    device = await DeviceService(db).register_device(data)
    return envelope(DeviceRead.model_validate(device).dump(), "Device registered successfully")


@router.post("/devices", status_code=status.HTTP_201_CREATED)
async def create_device(
    payload: DeviceCreateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    data = payload.model_dump()
    data["user_id"] = await _check_owner(request, db, payload.user_id)

    device = await DeviceService(db).create_device(data)
    return envelope(DeviceRead.model_validate(device).dump(), "Device created successfully")


@router.get("/devices")
async def list_devices(
    page: Pagination = Depends(),
    platform: Optional[DevicePlatform] = Query(None),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    search: Optional[str] = Query(None, max_length=255),
    db: AsyncSession = Depends(get_db)
):
    result = await DeviceService(db).list_devices(
        limit=page.limit,
        offset=page.offset,
        platform=platform.value if platform else None,
        is_active=is_active,
        search=search,
    )
    return envelope({
        "devices": [DeviceRead.model_validate(d).dump() for d in result["items"]],
        "total": result["total"],
        "limit": result["limit"],
        "offset": result["offset"],
    })


@router.get("/devices/user/{user_id}")
async def list_user_devices(
    user_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """All devices owned by a user, active or not"""
    if not request.app.state.settings.DEVICE_OWNERSHIP_ENABLED:
        raise ValidationException("Device ownership is disabled")
    if await db.get(User, user_id) is None:
        raise UserNotFoundException(user_id)

    devices = await DeviceService(db).list_user_devices(user_id)
    return envelope({
        "userId": user_id,
        "devices": [DeviceRead.model_validate(d).dump() for d in devices],
        "total": len(devices),
    })


@router.get("/devices/{device_id}")
async def get_device(device_id: int, db: AsyncSession = Depends(get_db)):
    device = await DeviceService(db).get_device(device_id)
    return envelope(DeviceRead.model_validate(device).dump())


@router.put("/devices/{device_id}")
async def update_device(
    device_id: int,
    payload: DeviceUpdateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    data = payload.model_dump(exclude_unset=True)
    if "user_id" in data:
        data["user_id"] = await _check_owner(request, db, data["user_id"])

    device = await DeviceService(db).update_device(device_id, data)
    return envelope(DeviceRead.model_validate(device).dump(), "Device updated successfully")


@router.delete("/devices/{device_id}")
async def delete_device(device_id: int, db: AsyncSession = Depends(get_db)):
    await DeviceService(db).delete_device(device_id)
    return envelope(message="Device deleted successfully")
