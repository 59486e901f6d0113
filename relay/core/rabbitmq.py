"""
RabbitMQ transport built on kombu
Durable queues, topic exchanges, persistent JSON publishing and a
prefetch-1 consume loop with ack / reject-without-requeue semantics
"""

import asyncio
import logging
import socket
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from amqp.exceptions import MessageNacked
from kombu import Connection, Consumer, Exchange, Producer, Queue
from kombu.exceptions import OperationalError
from kombu.message import Message

from .config import Settings
from .exceptions import TransportException
from .monitoring import messages_rejected, queue_reconnects

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Dict[str, Any]], Awaitable[None]]

PERSISTENT_DELIVERY_MODE = 2


class QueueTransport:
    """
    Thin connection manager around one kombu connection and channel.

    Blocking channel operations run on worker threads; an asyncio lock keeps
    them strictly one at a time, so the HTTP path, the consume loop and the
    consumer's own publishes can share a single transport.
    """

    def __init__(
        self,
        url: str,
        poll_interval: float = 1.0,
        publish_max_retries: int = 3,
        dead_letter_exchange: Optional[str] = None,
    ):
        self.url = url
        self.poll_interval = poll_interval
        self.publish_max_retries = publish_max_retries
        self.dead_letter_exchange = dead_letter_exchange

        self._connection: Optional[Connection] = None
        self._channel = None
        self._producer: Optional[Producer] = None
        self._lock = asyncio.Lock()

        self._queues: Dict[str, Queue] = {}
        self._exchanges: Dict[str, Exchange] = {}

        self._handler: Optional[MessageHandler] = None
        self._consume_queue: Optional[Queue] = None
        self._consumer: Optional[Consumer] = None
        self._pending: List[Message] = []
        self._consume_task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @classmethod
    def from_settings(cls, settings: Settings) -> "QueueTransport":
        return cls(
            settings.RABBITMQ_URL,
            poll_interval=settings.QUEUE_POLL_INTERVAL_SECONDS,
            publish_max_retries=settings.QUEUE_PUBLISH_MAX_RETRIES,
            dead_letter_exchange=settings.QUEUE_DEAD_LETTER_EXCHANGE,
        )

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and self._channel is not None

    @property
    def is_consuming(self) -> bool:
        return self._consume_task is not None and not self._consume_task.done()

    def _recoverable_errors(self) -> Tuple[type, ...]:
        errors: Tuple[type, ...] = (OperationalError, OSError)
        if self._connection is not None:
            errors += tuple(self._connection.connection_errors) + tuple(self._connection.channel_errors)
        return errors

    # Connection management

    async def connect(self):
        """Establish the connection and channel once; later calls reuse them"""
        async with self._lock:
            try:
                return await self._ensure_connected()
            except self._recoverable_errors() as e:
                self._invalidate()
                raise TransportException(f"Unable to connect to RabbitMQ: {e}")

    async def _ensure_connected(self):
        # Caller holds self._lock
        if self.is_connected:
            return self._channel
        await asyncio.to_thread(self._open)
        return self._channel

    def _open(self) -> None:
        connection = Connection(
            self.url,
            transport_options={"confirm_publish": True, "polling_interval": self.poll_interval},
        )
        connection.connect()
        channel = connection.channel()
        self._connection = connection
        self._channel = channel
        self._producer = Producer(channel, serializer="json", auto_declare=False)
        logger.info("RabbitMQ connected and channel created")

    def _invalidate(self) -> None:
        """Forget cached handles so the next operation reconnects"""
        connection = self._connection
        self._connection = None
        self._channel = None
        self._producer = None
        self._consumer = None
        if connection is not None:
            try:
                connection.release()
            except Exception as e:
                logger.debug(f"Ignoring error while dropping broken connection: {e}")

    # Declarations

    def _make_queue(self, name: str, exchange: Optional[Exchange] = None, routing_key: str = "") -> Queue:
        queue_arguments = None
        if self.dead_letter_exchange:
            queue_arguments = {"x-dead-letter-exchange": self.dead_letter_exchange}
        return Queue(
            name,
            exchange=exchange,
            routing_key=routing_key,
            durable=True,
            queue_arguments=queue_arguments,
        )

    async def declare_queue(self, name: str) -> Queue:
        """Ensure a durable queue exists"""
        queue = self._queues.get(name) or self._make_queue(name)
        await self._run(lambda: queue.bind(self._channel).declare())
        self._queues[name] = queue
        logger.info(f"Queue '{name}' asserted")
        return queue

    async def declare_exchange(self, name: str, kind: str = "direct") -> Exchange:
        """Ensure a durable direct or topic exchange exists"""
        if kind not in ("direct", "topic"):
            raise ValueError(f"Unsupported exchange type: {kind}")
        exchange = Exchange(name, type=kind, durable=True)
        await self._run(lambda: exchange.bind(self._channel).declare())
        self._exchanges[name] = exchange
        logger.info(f"Exchange '{name}' ({kind}) asserted")
        return exchange

    async def _run(self, operation: Callable[[], Any]) -> Any:
        async with self._lock:
            try:
                await self._ensure_connected()
                return await asyncio.to_thread(operation)
            except self._recoverable_errors() as e:
                self._invalidate()
                queue_reconnects.inc()
                raise TransportException(f"RabbitMQ operation failed: {e}")

    # Publishing

    async def publish(
        self,
        target: str,
        message: Dict[str, Any],
        routing_key: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Publish a JSON message persistently.

        With no routing key, target names a queue and the message goes through
        the default exchange; otherwise target names an exchange.

        Returns False when the broker negatively confirms the message. Raises
        TransportException once reconnect-and-retry is exhausted.
        """
        if routing_key is None:
            entity = self._queues.get(target) or self._make_queue(target)
            exchange_name, key = "", target
        else:
            entity = self._exchanges.get(target)
            exchange_name, key = target, routing_key

        attempts = self.publish_max_retries + 1
        last_error: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            async with self._lock:
                try:
                    await self._ensure_connected()
                    await asyncio.to_thread(
                        self._publish_sync, message, exchange_name, key, entity, headers
                    )
                    logger.debug(f"Message published to '{exchange_name or target}' with routing key '{key}'")
                    return True
                except MessageNacked:
                    logger.warning(f"Broker rejected message for '{target}'")
                    return False
                except self._recoverable_errors() as e:
                    last_error = e
                    self._invalidate()
                    queue_reconnects.inc()
                    logger.warning(f"Publish to '{target}' failed (attempt {attempt}/{attempts}): {e}")
            if attempt < attempts:
                await asyncio.sleep(min(0.2 * 2 ** (attempt - 1), 2.0))

        raise TransportException(f"Failed to publish message to '{target}': {last_error}")

    def _publish_sync(self, message, exchange_name, routing_key, entity, headers) -> None:
        self._producer.publish(
            message,
            exchange=exchange_name,
            routing_key=routing_key,
            serializer="json",
            delivery_mode=PERSISTENT_DELIVERY_MODE,
            headers=headers or {},
            declare=[entity] if entity is not None else [],
            retry=False,
        )

    # Consuming

    async def consume(
        self,
        source: str,
        handler: MessageHandler,
        routing_key: Optional[str] = None,
        queue_name: Optional[str] = None,
    ) -> None:
        """
        Register handler for messages from a queue, or from a topic exchange
        when routing_key is given (a durable queue is bound to it).

        Messages are fetched one at a time. Handler success acks; an exception
        or an undecodable body rejects without requeue.
        """
        if self.is_consuming:
            raise RuntimeError("Transport is already consuming")

        if routing_key is None:
            queue = self._queues.get(source) or self._make_queue(source)
        else:
            exchange = self._exchanges.get(source) or Exchange(source, type="topic", durable=True)
            self._exchanges[source] = exchange
            queue = self._make_queue(queue_name or f"{source}.{routing_key}", exchange, routing_key)

        self._handler = handler
        self._consume_queue = queue
        async with self._lock:
            try:
                await self._ensure_connected()
                await asyncio.to_thread(self._start_consumer_sync)
            except self._recoverable_errors() as e:
                self._invalidate()
                raise TransportException(f"Unable to consume from '{source}': {e}")

        self._stopping.clear()
        self._consume_task = asyncio.create_task(self._consume_loop(), name=f"consume:{queue.name}")
        logger.info(f"Consuming messages from queue '{queue.name}'")

    def _start_consumer_sync(self) -> None:
        queue = self._consume_queue.bind(self._channel)
        queue.declare()
        consumer = Consumer(
            self._channel,
            queues=[queue],
            on_message=self._pending.append,
            accept=["json"],
            no_ack=False,
            auto_declare=False,
        )
        consumer.qos(prefetch_count=1)
        consumer.consume()
        self._consumer = consumer

    def _drain_sync(self) -> None:
        try:
            self._connection.drain_events(timeout=self.poll_interval)
        except socket.timeout:
            pass

    async def _consume_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                async with self._lock:
                    await self._ensure_connected()
                    if self._consumer is None:
                        # Reconnected: deliveries on the old channel are gone
                        self._pending.clear()
                        await asyncio.to_thread(self._start_consumer_sync)
                    if not self._pending:
                        await asyncio.to_thread(self._drain_sync)
            except self._recoverable_errors() as e:
                logger.error(f"Consume loop lost its connection: {e}")
                self._invalidate()
                queue_reconnects.inc()
                await asyncio.sleep(self.poll_interval)
                continue

            while self._pending:
                await self._process(self._pending.pop(0))

    async def _process(self, message: Message) -> None:
        try:
            payload = message.decode()
            if not isinstance(payload, dict):
                raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
        except Exception as e:
            logger.error(f"Rejecting undecodable message: {e}")
            messages_rejected.inc()
            await self._settle(message, ack=False)
            return

        try:
            await self._handler(payload)
        except Exception as e:
            logger.error(f"Error processing message, rejecting without requeue: {e}", exc_info=True)
            messages_rejected.inc()
            await self._settle(message, ack=False)
        else:
            await self._settle(message, ack=True)

    async def _settle(self, message: Message, ack: bool) -> None:
        async with self._lock:
            try:
                if ack:
                    await asyncio.to_thread(message.ack)
                else:
                    await asyncio.to_thread(message.reject, requeue=False)
            except self._recoverable_errors() as e:
                # The broker redelivers unsettled messages once the channel is gone
                logger.error(f"Could not settle message, it will be redelivered: {e}")
                self._invalidate()
                queue_reconnects.inc()

    async def wait_consuming(self) -> None:
        """Block until the consume loop exits; re-raises whatever ended it"""
        task = self._consume_task
        if task is not None:
            # Cancelling the waiter must not cancel the loop itself
            await asyncio.shield(task)

    async def cancel(self) -> None:
        """Stop taking deliveries; waits for the in-flight handler to finish"""
        self._stopping.set()
        task = self._consume_task
        if task is not None:
            try:
                await task
            except Exception as e:
                logger.error(f"Consume loop had already failed: {e}")
            self._consume_task = None

        consumer = self._consumer
        if consumer is not None:
            async with self._lock:
                try:
                    await asyncio.to_thread(consumer.cancel)
                except self._recoverable_errors() as e:
                    logger.warning(f"Error cancelling consumer: {e}")
                self._consumer = None

    async def close(self) -> None:
        """Release channel then connection, tolerating either being absent"""
        await self.cancel()
        async with self._lock:
            await asyncio.to_thread(self._release)

    def _release(self) -> None:
        channel, connection = self._channel, self._connection
        self._channel = None
        self._connection = None
        self._producer = None
        if channel is not None:
            try:
                channel.close()
                logger.info("RabbitMQ channel closed")
            except Exception as e:
                logger.warning(f"Error closing RabbitMQ channel: {e}")
        if connection is not None:
            try:
                connection.close()
                logger.info("RabbitMQ connection closed")
            except Exception as e:
                logger.warning(f"Error closing RabbitMQ connection: {e}")
