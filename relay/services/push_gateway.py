"""
Push gateway client
Wraps the Firebase Admin messaging API; blocking SDK calls run on worker
threads under a timeout and provider failures are mapped to GatewayError
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import firebase_admin
from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from relay.core.config import Settings

logger = logging.getLogger(__name__)

INVALID_REGISTRATION_TOKEN = "messaging/invalid-registration-token"
TOKEN_NOT_REGISTERED = "messaging/registration-token-not-registered"

INVALID_TOKEN_CODES = frozenset({INVALID_REGISTRATION_TOKEN, TOKEN_NOT_REGISTERED})

# Provider exception type -> error code reported to callers
_ERROR_CODES = (
    (messaging.UnregisteredError, TOKEN_NOT_REGISTERED),
    (messaging.SenderIdMismatchError, "messaging/mismatched-credential"),
    (messaging.QuotaExceededError, "messaging/message-rate-exceeded"),
    (messaging.ThirdPartyAuthError, "messaging/third-party-auth-error"),
    (firebase_exceptions.UnavailableError, "messaging/server-unavailable"),
    (firebase_exceptions.DeadlineExceededError, "messaging/timeout"),
)


class GatewayError(Exception):
    """Push provider rejected or failed a request"""

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.message = message
        self.code = code


class InvalidTokenError(GatewayError):
    """Token is malformed or no longer registered; the device should be deactivated"""


class DeliveryFailedError(GatewayError):
    """Any other delivery failure, including timeouts"""


@dataclass
class SendResult:
    token: str
    message_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error_code is None


@dataclass
class MulticastResult:
    success_count: int
    failure_count: int
    responses: List[SendResult] = field(default_factory=list)

    @property
    def invalid_tokens(self) -> List[str]:
        return [r.token for r in self.responses if r.error_code in INVALID_TOKEN_CODES]


@dataclass
class TopicManagementResult:
    success_count: int
    failure_count: int
    errors: List[Dict[str, Any]] = field(default_factory=list)


def coerce_data(data: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """
    FCM data payloads only carry string values.

    Strings pass through, booleans become "true"/"false", None becomes "",
    dicts and lists become compact JSON and anything else goes through str().
    """
    if not data:
        return {}

    coerced = {}
    for key, value in data.items():
        if isinstance(value, str):
            coerced[str(key)] = value
        elif isinstance(value, bool):
            coerced[str(key)] = "true" if value else "false"
        elif value is None:
            coerced[str(key)] = ""
        elif isinstance(value, (dict, list)):
            coerced[str(key)] = json.dumps(value, separators=(",", ":"), default=str)
        else:
            coerced[str(key)] = str(value)
    return coerced


def classify_error(error: Exception) -> GatewayError:
    """Map a provider exception to InvalidTokenError or DeliveryFailedError"""
    message = str(error) or error.__class__.__name__

    for error_type, code in _ERROR_CODES:
        if isinstance(error, error_type):
            break
    else:
        if isinstance(error, firebase_exceptions.InvalidArgumentError):
            if "registration token" in message.lower():
                code = INVALID_REGISTRATION_TOKEN
            else:
                code = "messaging/invalid-argument"
        elif isinstance(error, firebase_exceptions.FirebaseError):
            code = f"messaging/{str(error.code).lower().replace('_', '-')}"
        elif isinstance(error, ValueError):
            # Raised by the SDK for malformed messages before any request is made
            code = "messaging/invalid-argument"
        else:
            code = "messaging/internal-error"

    if code in INVALID_TOKEN_CODES:
        return InvalidTokenError(message, code)
    return DeliveryFailedError(message, code)


class PushGatewayClient:
    """Async facade over firebase_admin.messaging bound to one Firebase app"""

    def __init__(self, app: Optional[firebase_admin.App] = None, timeout: float = 10.0):
        self.app = app
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "PushGatewayClient":
        from relay.core.firebase import initialize_firebase

        return cls(initialize_firebase(settings), timeout=settings.GATEWAY_TIMEOUT_SECONDS)

    async def _call(self, func, *args, **kwargs):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args, app=self.app, **kwargs),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise DeliveryFailedError(
                f"Push gateway did not respond within {self.timeout}s", "messaging/timeout"
            )
        except GatewayError:
            raise
        except Exception as e:
            raise classify_error(e) from e

    @staticmethod
    def _android_config(priority: str) -> messaging.AndroidConfig:
        return messaging.AndroidConfig(priority="high" if priority == "high" else "normal")

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
        priority: str = "normal",
    ) -> str:
        """Send to a single device; returns the provider message id"""
        message = messaging.Message(
            notification=messaging.Notification(title=title, body=body),
            data=coerce_data(data),
            token=token,
            android=self._android_config(priority),
        )
        message_id = await self._call(messaging.send, message)
        logger.info(f"Push sent to token {token[:12]}...: {message_id}")
        return message_id

    async def send_multicast(
        self,
        tokens: List[str],
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> MulticastResult:
        """Send one notification to many tokens; per-token results keep input order"""
        if not tokens:
            raise ValueError("Device tokens list must not be empty")

        message = messaging.MulticastMessage(
            notification=messaging.Notification(title=title, body=body),
            data=coerce_data(data),
            tokens=tokens,
        )
        response = await self._call(messaging.send_each_for_multicast, message)

        results = []
        for token, item in zip(tokens, response.responses):
            if item.success:
                results.append(SendResult(token=token, message_id=item.message_id))
            else:
                error = classify_error(item.exception)
                results.append(SendResult(token=token, error_code=error.code, error_message=error.message))

        logger.info(
            f"Multicast result - Success: {response.success_count}, "
            f"Failure: {response.failure_count}"
        )
        return MulticastResult(
            success_count=response.success_count,
            failure_count=response.failure_count,
            responses=results,
        )

    async def send_to_topic(
        self,
        topic: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> str:
        if not topic:
            raise ValueError("Topic is required")

        message = messaging.Message(
            notification=messaging.Notification(title=title, body=body),
            data=coerce_data(data),
            topic=topic,
        )
        message_id = await self._call(messaging.send, message)
        logger.info(f"Push sent to topic '{topic}': {message_id}")
        return message_id

    async def subscribe_to_topic(self, tokens: List[str], topic: str) -> TopicManagementResult:
        response = await self._call(messaging.subscribe_to_topic, tokens, topic)
        return self._topic_result(response)

    async def unsubscribe_from_topic(self, tokens: List[str], topic: str) -> TopicManagementResult:
        response = await self._call(messaging.unsubscribe_from_topic, tokens, topic)
        return self._topic_result(response)

    @staticmethod
    def _topic_result(response) -> TopicManagementResult:
        return TopicManagementResult(
            success_count=response.success_count,
            failure_count=response.failure_count,
            errors=[{"index": e.index, "reason": e.reason} for e in response.errors],
        )
