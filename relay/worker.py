"""
Consumer worker process
Runs the notification consumer until SIGINT/SIGTERM; exits 0 after a graceful
shutdown and 1 when startup fails or consumption dies
"""

import asyncio
import logging
import signal
import sys

from relay.core.config import Settings, get_settings
from relay.core.database import Database
from relay.core.exceptions import TransportException
from relay.core.logging import setup_logging
from relay.core.rabbitmq import QueueTransport
from relay.services.notification_consumer import NotificationConsumer
from relay.services.push_gateway import PushGatewayClient

logger = logging.getLogger(__name__)


async def run_worker(settings: Settings) -> int:
    database = Database(settings)
    if not await database.ping():
        logger.error("Database is unreachable, worker not started")
        await database.close()
        return 1
    await database.init_models()

    try:
        gateway = PushGatewayClient.from_settings(settings)
    except (ValueError, FileNotFoundError) as e:
        logger.error(f"Firebase initialization failed: {e}")
        await database.close()
        return 1

    transport = QueueTransport.from_settings(settings)
    consumer = NotificationConsumer(database, transport, gateway, settings)

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    try:
        try:
            await consumer.start()
        except TransportException as e:
            logger.error(f"Could not start consuming: {e.detail}")
            await transport.close()
            await database.close()
            return 1

        logger.info("Worker running, waiting for messages")
        exit_code = await _supervise(transport, stop_requested)

        await consumer.stop()
        await transport.close()
        await database.close()
        logger.info("Worker stopped")
        return exit_code
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


async def _supervise(transport: QueueTransport, stop_requested: asyncio.Event) -> int:
    """Wait for a shutdown signal or for the consume loop to die, whichever comes first"""
    stop_waiter = asyncio.create_task(stop_requested.wait())
    consume_waiter = asyncio.create_task(transport.wait_consuming())
    done, pending = await asyncio.wait(
        {stop_waiter, consume_waiter}, return_when=asyncio.FIRST_COMPLETED
    )
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    if stop_waiter in done:
        logger.info("Shutdown signal received, finishing in-flight message")
        return 0

    error = consume_waiter.exception()
    if error is not None:
        logger.error(f"Consume loop crashed, shutting down: {error}", exc_info=error)
    else:
        logger.error("Consume loop ended unexpectedly, shutting down")
    return 1


def main() -> None:
    settings = get_settings()
    setup_logging(settings, process_name="worker")
    sys.exit(asyncio.run(run_worker(settings)))


if __name__ == "__main__":
    main()
