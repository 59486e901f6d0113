from typing import Optional
from datetime import datetime

from relay.schemas.base import BaseSchema


class FcmJobRead(BaseSchema):
    id: int
    device_id: int
    identifier: Optional[str] = None
    message_id: Optional[str] = None
    deliver_at: Optional[datetime] = None
    created_at: datetime
