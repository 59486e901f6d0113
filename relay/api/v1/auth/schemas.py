"""
Authentication schemas for request/response validation
"""

from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    """Email and password login"""
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)

    model_config = {
        "json_schema_extra": {
            "example": {
                "email": "asha@example.com",
                "password": "s3cret-pass"
            }
        }
    }
