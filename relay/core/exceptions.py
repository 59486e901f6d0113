"""
Custom exception classes and error handlers
Provides the {success: false, error: ...} envelope across the application
"""

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)


class RelayException(HTTPException):
    """Base exception class for the relay service"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class ValidationException(RelayException):
    """400 Bad Request for missing or malformed fields"""

    def __init__(self, detail: str, error_code: str = "VALIDATION_ERROR"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )


class ConflictException(RelayException):
    """Duplicate unique field, surfaced as 400"""

    def __init__(self, detail: str, error_code: str = "CONFLICT"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )


class UnauthorizedException(RelayException):
    """401 Unauthorized"""

    def __init__(self, detail: str = "Authentication token is required", error_code: str = "UNAUTHORIZED"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code=error_code,
            headers={"WWW-Authenticate": "Bearer"}
        )


class NotFoundException(RelayException):
    """404 Not Found"""

    def __init__(self, detail: str = "Not found", error_code: str = "NOT_FOUND"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
            error_code=error_code
        )


class TransportException(RelayException):
    """503 when the queue cannot accept messages after retrying"""

    def __init__(
        self,
        detail: str = "Message queue unavailable",
        error_code: str = "TRANSPORT_ERROR"
    ):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code=error_code
        )


# Directory lookups
class UserNotFoundException(NotFoundException):
    """Unknown user id"""

    def __init__(self, user_id: int):
        super().__init__(
            detail=f"User with ID {user_id} not found",
            error_code="USER_NOT_FOUND"
        )


class DeviceNotFoundException(NotFoundException):
    """Unknown, inactive or foreign device id"""

    def __init__(self, detail: str):
        super().__init__(detail=detail, error_code="DEVICE_NOT_FOUND")


class NoActiveDevicesException(NotFoundException):
    """Broadcast found nothing to send to"""

    def __init__(self):
        super().__init__(
            detail="No active devices found in the system",
            error_code="NO_ACTIVE_DEVICES"
        )


class NoActiveDevicesForUserException(NotFoundException):
    """User exists but has no active device"""

    def __init__(self, user_id: int):
        super().__init__(
            detail=f"No active devices found for user {user_id}",
            error_code="NO_ACTIVE_DEVICES_FOR_USER"
        )


class DuplicateResourceException(ConflictException):
    """Resource already exists"""

    def __init__(self, resource: str, field: str):
        super().__init__(
            detail=f"{resource} with this {field} already exists",
            error_code="DUPLICATE_RESOURCE"
        )


def _error_body(detail: Any) -> Dict[str, Any]:
    return {"success": False, "error": detail}


async def relay_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=_error_body(message))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("Internal server error"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers rendering every failure as the error envelope"""
    app.add_exception_handler(HTTPException, relay_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
