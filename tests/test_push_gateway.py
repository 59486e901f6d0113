"""
Tests for the push gateway client
"""
import time
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from relay.services.push_gateway import (
    INVALID_REGISTRATION_TOKEN,
    TOKEN_NOT_REGISTERED,
    DeliveryFailedError,
    InvalidTokenError,
    PushGatewayClient,
    classify_error,
    coerce_data,
)


@pytest.fixture
def client():
    return PushGatewayClient(app=None, timeout=1.0)


class TestCoerceData:
    def test_empty(self):
        assert coerce_data(None) == {}
        assert coerce_data({}) == {}

    def test_every_value_becomes_a_string(self):
        data = {
            "orderId": 1042,
            "ratio": 1.5,
            "urgent": True,
            "muted": False,
            "note": None,
            "meta": {"a": 1},
            "tags": [1, "x"],
            "screen": "orders",
        }

        assert coerce_data(data) == {
            "orderId": "1042",
            "ratio": "1.5",
            "urgent": "true",
            "muted": "false",
            "note": "",
            "meta": '{"a":1}',
            "tags": '[1,"x"]',
            "screen": "orders",
        }


class TestClassifyError:
    """Provider exceptions map onto the two gateway error kinds"""

    def test_unregistered_token(self):
        error = classify_error(messaging.UnregisteredError("Requested entity was not found."))

        assert isinstance(error, InvalidTokenError)
        assert error.code == TOKEN_NOT_REGISTERED

    def test_malformed_token(self):
        error = classify_error(
            firebase_exceptions.InvalidArgumentError(
                "The registration token is not a valid FCM registration token"
            )
        )

        assert isinstance(error, InvalidTokenError)
        assert error.code == INVALID_REGISTRATION_TOKEN

    def test_other_invalid_argument(self):
        error = classify_error(firebase_exceptions.InvalidArgumentError("Message payload too large"))

        assert isinstance(error, DeliveryFailedError)
        assert error.code == "messaging/invalid-argument"

    def test_quota_exceeded(self):
        error = classify_error(messaging.QuotaExceededError("Sending limit exceeded"))

        assert isinstance(error, DeliveryFailedError)
        assert error.code == "messaging/message-rate-exceeded"

    def test_unavailable(self):
        error = classify_error(firebase_exceptions.UnavailableError("Service unavailable"))

        assert error.code == "messaging/server-unavailable"

    def test_unexpected_exception(self):
        error = classify_error(RuntimeError("boom"))

        assert isinstance(error, DeliveryFailedError)
        assert error.code == "messaging/internal-error"
        assert error.message == "boom"


class TestSend:
    async def test_returns_message_id(self, client):
        with patch("firebase_admin.messaging.send", return_value="projects/p/messages/1") as send:
            message_id = await client.send("token-1", "Hello", "World", {"orderId": 7}, priority="high")

        assert message_id == "projects/p/messages/1"
        message = send.call_args.args[0]
        assert message.token == "token-1"
        assert message.notification.title == "Hello"
        assert message.notification.body == "World"
        assert message.data == {"orderId": "7"}
        assert message.android.priority == "high"
        assert send.call_args.kwargs == {"app": None}

    async def test_provider_error_is_classified(self, client):
        with patch("firebase_admin.messaging.send", side_effect=messaging.UnregisteredError("gone")):
            with pytest.raises(InvalidTokenError) as exc_info:
                await client.send("token-1", "Hello", "World")

        assert exc_info.value.code == TOKEN_NOT_REGISTERED

    async def test_timeout(self):
        client = PushGatewayClient(app=None, timeout=0.05)

        def slow_send(*args, **kwargs):
            time.sleep(0.3)
            return "late"

        with patch("firebase_admin.messaging.send", side_effect=slow_send):
            with pytest.raises(DeliveryFailedError) as exc_info:
                await client.send("token-1", "Hello", "World")

        assert exc_info.value.code == "messaging/timeout"

    async def test_send_to_topic_requires_topic(self, client):
        with pytest.raises(ValueError):
            await client.send_to_topic("", "Hello", "World")


class TestMulticast:
    async def test_reports_invalid_tokens(self, client):
        response = SimpleNamespace(
            success_count=1,
            failure_count=1,
            responses=[
                SimpleNamespace(success=True, message_id="m-1", exception=None),
                SimpleNamespace(success=False, message_id=None, exception=messaging.UnregisteredError("gone")),
            ],
        )

        with patch("firebase_admin.messaging.send_each_for_multicast", return_value=response):
            result = await client.send_multicast(["t-1", "t-2"], "Hello", "World")

        assert result.success_count == 1
        assert result.responses[0].message_id == "m-1"
        assert result.invalid_tokens == ["t-2"]

    async def test_empty_token_list(self, client):
        with pytest.raises(ValueError):
            await client.send_multicast([], "Hello", "World")


class TestTopicSubscriptions:
    async def test_subscribe(self, client):
        response = SimpleNamespace(
            success_count=1,
            failure_count=1,
            errors=[SimpleNamespace(index=1, reason="INVALID_ARGUMENT")],
        )

        with patch("firebase_admin.messaging.subscribe_to_topic", return_value=response) as subscribe:
            result = await client.subscribe_to_topic(["t-1", "bad"], "news")

        subscribe.assert_called_once_with(["t-1", "bad"], "news", app=None)
        assert result.success_count == 1
        assert result.errors == [{"index": 1, "reason": "INVALID_ARGUMENT"}]
