"""Base schemas and the response envelope shared by all routers"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Any, Dict, Optional


class BaseSchema(BaseModel):
    """Base schema: camelCase on the wire, snake_case in Python, readable from ORM rows"""

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def dump(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def envelope(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    """Successful response body: {success, data, message?}"""
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body
