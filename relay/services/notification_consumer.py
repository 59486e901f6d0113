"""
Notification consumer
Drains the notification queue one message at a time, delivers through the
push gateway and records the outcome
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from relay.core.config import Settings
from relay.core.database import Database
from relay.core.monitoring import bookkeeping_failures, deliveries
from relay.core.rabbitmq import QueueTransport
from relay.schemas.messages import DispatchMessage, DoneEvent
from relay.services.device_service import DeviceService
from relay.services.fcm_job_service import FcmJobService
from relay.services.notification_service import NotificationService
from relay.services.push_gateway import GatewayError, InvalidTokenError, PushGatewayClient

logger = logging.getLogger(__name__)


@dataclass
class DeliveryOutcome:
    status: str
    message_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class NotificationConsumer:
    """
    Queue worker for dispatch messages.

    Gateway failures are outcomes, not errors: they are recorded and the
    message is acknowledged. Only malformed messages and unexpected errors
    propagate, which makes the transport reject them without requeue.
    """

    def __init__(
        self,
        database: Database,
        transport: QueueTransport,
        gateway: PushGatewayClient,
        settings: Settings,
    ):
        self.database = database
        self.transport = transport
        self.gateway = gateway
        self.settings = settings
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Declare the queue and done exchange and begin consuming; repeat calls are no-ops"""
        if self._started:
            return

        await self.transport.connect()
        await self.transport.declare_queue(self.settings.NOTIFICATION_QUEUE)
        await self.transport.declare_exchange(self.settings.DONE_EXCHANGE, "topic")
        await self.transport.consume(self.settings.NOTIFICATION_QUEUE, self.handle_message)
        self._started = True
        logger.info(f"FCM consumer started on queue '{self.settings.NOTIFICATION_QUEUE}'")

    async def stop(self) -> None:
        """Stop new deliveries and wait for the in-flight message"""
        if not self._started:
            return
        await self.transport.cancel()
        self._started = False
        logger.info("FCM consumer stopped")

    async def handle_message(self, payload: Dict[str, Any]) -> DeliveryOutcome:
        try:
            message = DispatchMessage.model_validate(payload)
        except ValidationError as e:
            logger.error(f"Invalid dispatch message: {e.errors()[0].get('msg') if e.errors() else e}")
            raise

        logger.info(
            f"Processing notification for device {message.device_id} "
            f"(identifier={message.identifier}, notification={message.notification_id})"
        )

        try:
            message_id = await self.gateway.send(
                message.device_token,
                message.title,
                message.body,
                message.data,
                priority=message.priority,
            )
        except GatewayError as e:
            return await self._record_failure(message, e)

        return await self._record_success(message, message_id)

    async def _record_success(self, message: DispatchMessage, message_id: str) -> DeliveryOutcome:
        deliveries.labels(status="sent").inc()
        sent_at = datetime.now(timezone.utc)
        logger.info(f"Notification delivered to device {message.device_id}: {message_id}")

        if message.notification_id is not None and self.settings.NOTIFICATION_HISTORY_ENABLED:
            await self._bookkeeping(
                "mark_sent",
                lambda session: NotificationService(session).mark_sent(message.notification_id, message_id),
            )

        if message.identifier:
            await self._bookkeeping(
                "fcm_job",
                lambda session: FcmJobService(session).create_fcm_job(
                    device_id=message.device_id,
                    identifier=message.identifier,
                    message_id=message_id,
                    deliver_at=sent_at,
                ),
            )

        await self._bookkeeping(
            "touch_device",
            lambda session: DeviceService(session).touch(message.device_id),
        )

        await self._publish_done(
            DoneEvent(
                device_id=message.device_id,
                user_id=message.user_id,
                notification_id=message.notification_id,
                identifier=message.identifier,
                status="sent",
                message_id=message_id,
                deliver_at=sent_at,
                sent_at=sent_at,
            )
        )
        return DeliveryOutcome(status="sent", message_id=message_id)

    async def _record_failure(self, message: DispatchMessage, error: GatewayError) -> DeliveryOutcome:
        status = "invalid_token" if isinstance(error, InvalidTokenError) else "failed"
        deliveries.labels(status=status).inc()
        logger.warning(
            f"Delivery to device {message.device_id} failed ({error.code}): {error.message}"
        )

        if message.notification_id is not None and self.settings.NOTIFICATION_HISTORY_ENABLED:
            await self._bookkeeping(
                "mark_failed",
                lambda session: NotificationService(session).mark_failed(
                    message.notification_id, error.code, error.message
                ),
            )

        if status == "invalid_token":
            await self._bookkeeping(
                "deactivate_device",
                lambda session: DeviceService(session).deactivate(message.device_id),
            )

        await self._publish_done(
            DoneEvent(
                device_id=message.device_id,
                user_id=message.user_id,
                notification_id=message.notification_id,
                identifier=message.identifier,
                status=status,
                fcm_error_code=error.code,
                fcm_error_message=error.message,
            )
        )
        return DeliveryOutcome(status=status, error_code=error.code, error_message=error.message)

    async def _bookkeeping(self, step: str, operation) -> None:
        """Run one store update in its own session; failures are logged, never raised"""
        try:
            async with self.database.session() as session:
                await operation(session)
        except Exception as e:
            bookkeeping_failures.labels(step=step).inc()
            logger.error(f"Bookkeeping step '{step}' failed: {e}", exc_info=True)

    async def _publish_done(self, event: DoneEvent) -> None:
        try:
            accepted = await self.transport.publish(
                self.settings.DONE_EXCHANGE, event.to_payload(), routing_key=event.routing_key
            )
            if not accepted:
                raise RuntimeError("broker rejected the done event")
        except Exception as e:
            bookkeeping_failures.labels(step="done_event").inc()
            logger.error(f"Could not publish done event for device {event.device_id}: {e}")
