"""
Application middleware for request/response processing
Handles request ids and access logging
"""

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import time
import uuid
import logging
from typing import Callable

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add unique request ID to each request"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests and responses"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        client = request.client.host if request.client else "unknown"

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            logger.error(
                f"{request.method} {request.url.path} failed: {e} "
                f"Time: {process_time:.3f}s"
            )
            raise

        process_time = time.time() - start_time
        logger.info(
            f"{request.method} {request.url.path} from {client} -> "
            f"{response.status_code} in {process_time:.3f}s "
            f"Request ID: {getattr(request.state, 'request_id', 'N/A')}"
        )
        response.headers["X-Process-Time"] = f"{process_time:.4f}"

        return response


def setup_middleware(app: FastAPI):
    """Configure all middleware for the application"""
    # Added last runs first: the request id exists before logging reads it
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
