"""Device directory: registration, CRUD and lookups used by the pipeline"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import select, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from relay.core.exceptions import DeviceNotFoundException, DuplicateResourceException
from relay.models import Device, DevicePlatform
from relay.utils.pagination import paginate

logger = logging.getLogger(__name__)

# Fields a client may set on register/create/update
DEVICE_FIELDS = ("device_id", "platform", "app_version", "os_version", "device_model")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeviceService:
    """Service for managing push devices"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_token(self, device_token: str) -> Optional[Device]:
        result = await self.db.execute(select(Device).where(Device.device_token == device_token))
        return result.scalar_one_or_none()

    async def register_device(self, data: Dict[str, Any]) -> Device:
        """
        Register a device, or refresh the existing row for the same token.

        Re-registering reactivates the device and keeps its id; fields left
        out of the request keep their stored values.
        """
        device = await self.get_by_token(data["device_token"])
        if device is None:
            device = Device(
                device_token=data["device_token"],
                platform=data.get("platform") or DevicePlatform.ANDROID,
                is_active=True,
                last_active_at=_utcnow(),
            )
            for key in DEVICE_FIELDS + ("user_id",):
                if data.get(key) is not None:
                    setattr(device, key, data[key])
            self.db.add(device)
            # A concurrent registration of the same token wins; this one is a conflict
            await self._commit_unique()
            await self.db.refresh(device)
            logger.info(f"Registered device {device.id} ({device.platform.value})")
            return device

        return await self._refresh_registration(device, data)

    async def _refresh_registration(self, device: Device, data: Dict[str, Any]) -> Device:
        for key in DEVICE_FIELDS + ("user_id",):
            if data.get(key) is not None:
                setattr(device, key, data[key])
        device.is_active = True
        device.last_active_at = _utcnow()
        await self.db.commit()
        await self.db.refresh(device)
        logger.info(f"Re-registered device {device.id}")
        return device

    async def create_device(self, data: Dict[str, Any]) -> Device:
        """Create a device; an existing token is a conflict"""
        if await self.get_by_token(data["device_token"]) is not None:
            raise DuplicateResourceException("Device", "token")

        device = Device(
            device_token=data["device_token"],
            platform=data.get("platform") or DevicePlatform.ANDROID,
            is_active=data["is_active"] if data.get("is_active") is not None else True,
            last_active_at=_utcnow(),
            user_id=data.get("user_id"),
        )
        for key in DEVICE_FIELDS:
            if data.get(key) is not None:
                setattr(device, key, data[key])

        self.db.add(device)
        await self._commit_unique()
        await self.db.refresh(device)
        return device

    async def _commit_unique(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateResourceException("Device", "token")

    async def list_devices(
        self,
        limit: int = 50,
        offset: int = 0,
        platform: Optional[str] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        query = select(Device)
        if platform:
            query = query.where(Device.platform == DevicePlatform(platform))
        if is_active is not None:
            query = query.where(Device.is_active == is_active)
        if user_id is not None:
            query = query.where(Device.user_id == user_id)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    Device.device_token.like(pattern),
                    Device.device_id.like(pattern),
                    Device.device_model.like(pattern),
                )
            )
        query = query.order_by(Device.created_at.desc(), Device.id.desc())
        return await paginate(self.db, query, limit=limit, offset=offset)

    async def get_device(self, device_id: int) -> Device:
        device = await self.db.get(Device, device_id)
        if device is None:
            raise DeviceNotFoundException(f"Device with ID {device_id} not found")
        return device

    async def update_device(self, device_id: int, data: Dict[str, Any]) -> Device:
        device = await self.get_device(device_id)

        new_token = data.get("device_token")
        if new_token and new_token != device.device_token:
            if await self.get_by_token(new_token) is not None:
                raise DuplicateResourceException("Device", "token")
            device.device_token = new_token

        for key in DEVICE_FIELDS + ("user_id",):
            if data.get(key) is not None:
                setattr(device, key, data[key])
        if data.get("is_active") is not None:
            device.is_active = data["is_active"]
            if data["is_active"]:
                device.last_active_at = _utcnow()

        await self._commit_unique()
        await self.db.refresh(device)
        return device

    async def delete_device(self, device_id: int) -> None:
        device = await self.get_device(device_id)
        await self.db.delete(device)
        await self.db.commit()
        logger.info(f"Deleted device {device_id}")

    async def list_user_devices(self, user_id: int, active_only: bool = False) -> List[Device]:
        query = select(Device).where(Device.user_id == user_id)
        if active_only:
            query = query.where(Device.is_active.is_(True))
        result = await self.db.execute(query.order_by(Device.id))
        return list(result.scalars().all())

    async def list_active_devices(self) -> List[Device]:
        result = await self.db.execute(
            select(Device).where(Device.is_active.is_(True)).order_by(Device.id)
        )
        return list(result.scalars().all())

    async def most_recent_active_device(self, user_id: int) -> Optional[Device]:
        """The user's active device seen most recently; never-seen devices sort last"""
        result = await self.db.execute(
            select(Device)
            .where(Device.user_id == user_id, Device.is_active.is_(True))
            .order_by(Device.last_active_at.desc().nulls_last(), Device.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def deactivate(self, device_id: int) -> None:
        await self.db.execute(
            update(Device).where(Device.id == device_id).values(is_active=False)
        )
        await self.db.commit()
        logger.warning(f"Device {device_id} deactivated after invalid token report")

    async def touch(self, device_id: int) -> None:
        """Refresh last_active_at after a successful delivery"""
        await self.db.execute(
            update(Device).where(Device.id == device_id).values(last_active_at=_utcnow())
        )
        await self.db.commit()
