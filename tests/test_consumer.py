"""
Tests for the notification consumer
"""
from unittest.mock import patch

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from relay.models import Device, FcmJob, Notification, NotificationStatus
from relay.schemas.messages import DispatchMessage
from relay.services.fcm_job_service import FcmJobService
from relay.services.notification_consumer import NotificationConsumer
from relay.services.notification_service import NotificationService
from relay.services.push_gateway import (
    TOKEN_NOT_REGISTERED,
    DeliveryFailedError,
    InvalidTokenError,
)

MESSAGE_ID = "projects/relay-test/messages/0:1700000000000000%abc"


@pytest.fixture
def consumer(database, transport, gateway, settings):
    return NotificationConsumer(database, transport, gateway, settings)


@pytest.fixture
def dispatch_for(db_session):
    """Build a dispatch payload, with a pending notification record when asked"""

    async def _build(device, with_notification=True, **overrides):
        notification_id = None
        if with_notification:
            notification = await NotificationService(db_session).create_pending(
                user_id=device.user_id, device=device, title="Order update", body="Your order shipped"
            )
            notification_id = notification.id
        values = {
            "user_id": device.user_id,
            "device_id": device.id,
            "device_token": device.device_token,
            "title": "Order update",
            "body": "Your order shipped",
            "data": {"orderId": 12},
            "identifier": "fcm-msg-0123456789abcdef",
            "notification_id": notification_id,
        }
        values.update(overrides)
        return DispatchMessage(**values).to_payload()

    return _build


async def load(database, model, row_id):
    async with database.session_factory() as session:
        return await session.get(model, row_id)


async def jobs_for(database, device_id):
    async with database.session_factory() as session:
        result = await session.execute(select(FcmJob).where(FcmJob.device_id == device_id))
        return list(result.scalars().all())


class TestLifecycle:
    async def test_start_declares_and_consumes(self, consumer, transport, settings):
        await consumer.start()

        assert transport.queues == [settings.NOTIFICATION_QUEUE]
        assert transport.exchanges == {settings.DONE_EXCHANGE: "topic"}
        assert transport.consumed_from == settings.NOTIFICATION_QUEUE
        assert transport.handler == consumer.handle_message
        assert consumer.is_running

    async def test_start_is_idempotent(self, consumer, transport, settings):
        await consumer.start()
        await consumer.start()

        assert transport.queues == [settings.NOTIFICATION_QUEUE]

    async def test_stop_cancels_consumption(self, consumer, transport):
        await consumer.start()
        await consumer.stop()

        assert transport.cancelled
        assert not consumer.is_running


class TestSuccessfulDelivery:
    """Gateway accepts the message"""

    async def test_records_success(self, consumer, transport, gateway, database, settings, make_user, make_device, dispatch_for):
        user = await make_user()
        device = await make_device(user_id=user.id)
        payload = await dispatch_for(device)

        outcome = await consumer.handle_message(payload)

        assert outcome.status == "sent"
        assert outcome.message_id == MESSAGE_ID
        gateway.send.assert_awaited_once_with(
            device.device_token, "Order update", "Your order shipped", {"orderId": 12}, priority="normal"
        )

        notification = await load(database, Notification, payload["notificationId"])
        assert notification.status == NotificationStatus.SENT
        assert notification.fcm_message_id == MESSAGE_ID
        assert notification.sent_at is not None

        jobs = await jobs_for(database, device.id)
        assert len(jobs) == 1
        assert jobs[0].identifier == "fcm-msg-0123456789abcdef"
        assert jobs[0].message_id == MESSAGE_ID

        refreshed = await load(database, Device, device.id)
        assert refreshed.last_active_at is not None
        assert refreshed.is_active

    async def test_publishes_done_event(self, consumer, transport, settings, make_device, dispatch_for):
        device = await make_device()
        payload = await dispatch_for(device, with_notification=False)

        await consumer.handle_message(payload)

        events = transport.to(settings.DONE_EXCHANGE)
        assert len(events) == 1
        assert events[0].routing_key == "notification.done.sent"
        event = events[0].message
        assert event["status"] == "sent"
        assert event["deviceId"] == device.id
        assert event["messageId"] == MESSAGE_ID
        assert event["identifier"] == "fcm-msg-0123456789abcdef"
        assert "notificationId" not in event

    async def test_no_job_without_identifier(self, consumer, database, make_device, dispatch_for):
        device = await make_device()
        payload = await dispatch_for(device, with_notification=False, identifier=None)

        await consumer.handle_message(payload)

        assert await jobs_for(database, device.id) == []

    async def test_repeated_delivery_adds_job_rows(self, consumer, database, make_device, dispatch_for):
        """Redelivered messages are sent again and logged again"""
        device = await make_device()
        payload = await dispatch_for(device, with_notification=False)

        await consumer.handle_message(payload)
        await consumer.handle_message(payload)

        assert len(await jobs_for(database, device.id)) == 2

    async def test_history_disabled_leaves_record_alone(self, database, transport, gateway, settings, make_user, make_device, dispatch_for):
        settings = settings.model_copy(update={"NOTIFICATION_HISTORY_ENABLED": False})
        consumer = NotificationConsumer(database, transport, gateway, settings)
        user = await make_user()
        device = await make_device(user_id=user.id)
        payload = await dispatch_for(device)

        await consumer.handle_message(payload)

        notification = await load(database, Notification, payload["notificationId"])
        assert notification.status == NotificationStatus.PENDING


class TestFailedDelivery:
    """Gateway rejects the message"""

    async def test_invalid_token_deactivates_device(self, consumer, transport, gateway, database, settings, make_user, make_device, dispatch_for):
        user = await make_user()
        device = await make_device(user_id=user.id)
        payload = await dispatch_for(device)
        gateway.send.side_effect = InvalidTokenError("Requested entity was not found.", TOKEN_NOT_REGISTERED)

        outcome = await consumer.handle_message(payload)

        assert outcome.status == "invalid_token"
        assert outcome.error_code == TOKEN_NOT_REGISTERED

        notification = await load(database, Notification, payload["notificationId"])
        assert notification.status == NotificationStatus.INVALID_TOKEN
        assert notification.fcm_error_code == TOKEN_NOT_REGISTERED

        refreshed = await load(database, Device, device.id)
        assert not refreshed.is_active
        assert await jobs_for(database, device.id) == []

        events = transport.to(settings.DONE_EXCHANGE)
        assert events[0].routing_key == "notification.done.invalid_token"
        assert events[0].message["fcmErrorCode"] == TOKEN_NOT_REGISTERED
        assert events[0].message["fcmErrorMessage"] == "Requested entity was not found."

    async def test_other_failure_keeps_device_active(self, consumer, transport, gateway, database, settings, make_user, make_device, dispatch_for):
        user = await make_user()
        device = await make_device(user_id=user.id)
        payload = await dispatch_for(device)
        gateway.send.side_effect = DeliveryFailedError("Quota exceeded", "messaging/message-rate-exceeded")

        outcome = await consumer.handle_message(payload)

        assert outcome.status == "failed"
        notification = await load(database, Notification, payload["notificationId"])
        assert notification.status == NotificationStatus.FAILED
        assert notification.fcm_error_code == "messaging/message-rate-exceeded"
        assert (await load(database, Device, device.id)).is_active
        assert transport.to(settings.DONE_EXCHANGE)[0].routing_key == "notification.done.failed"


class TestMalformedMessages:
    async def test_missing_fields_raise(self, consumer, transport, gateway):
        """The transport rejects the message when the handler raises"""
        with pytest.raises(ValidationError):
            await consumer.handle_message({"version": 1, "deviceId": 1, "title": "Hi"})

        gateway.send.assert_not_awaited()
        assert transport.published == []

    async def test_unknown_version_raises(self, consumer, make_device, dispatch_for):
        device = await make_device()
        payload = await dispatch_for(device, with_notification=False)
        payload["version"] = 2

        with pytest.raises(ValidationError):
            await consumer.handle_message(payload)


class TestBookkeepingFailures:
    """Store and done-event failures never undo a delivery"""

    async def test_store_failure_is_swallowed(self, consumer, transport, settings, make_device, dispatch_for):
        device = await make_device()
        payload = await dispatch_for(device, with_notification=False)

        with patch.object(FcmJobService, "create_fcm_job", side_effect=RuntimeError("database is locked")):
            outcome = await consumer.handle_message(payload)

        assert outcome.status == "sent"
        assert len(transport.to(settings.DONE_EXCHANGE)) == 1

    async def test_done_event_failure_is_swallowed(self, consumer, transport, database, make_device, dispatch_for):
        device = await make_device()
        payload = await dispatch_for(device, with_notification=False)
        transport.fail_all = True

        outcome = await consumer.handle_message(payload)

        assert outcome.status == "sent"
        assert len(await jobs_for(database, device.id)) == 1

    async def test_missing_notification_record(self, consumer, make_device, dispatch_for):
        device = await make_device()
        payload = await dispatch_for(device, with_notification=False, notification_id=999)

        outcome = await consumer.handle_message(payload)

        assert outcome.status == "sent"
