"""Main FastAPI application with all middleware"""

from fastapi import FastAPI
from contextlib import asynccontextmanager
from typing import Optional
import logging

from relay.api.v1 import build_api_router
from relay.core.config import Settings, get_settings
from relay.core.database import Database
from relay.core.exceptions import TransportException, register_exception_handlers
from relay.core.logging import setup_logging
from relay.core.middleware import setup_middleware
from relay.core.monitoring import setup_health_endpoints, setup_monitoring_middleware
from relay.core.rabbitmq import QueueTransport
from relay.services.notification_consumer import NotificationConsumer
from relay.services.push_gateway import PushGatewayClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    settings: Settings = app.state.settings
    setup_logging(settings, process_name="api")

    # Startup
    logger.info(f"Starting up {settings.APP_NAME} ({settings.ENVIRONMENT})...")

    database = Database(settings)
    if not await database.ping():
        await database.close()
        raise RuntimeError("Database is unreachable")
    await database.init_models()
    app.state.database = database

    # Publishing reconnects on demand, so a broker outage here is not fatal
    transport = QueueTransport.from_settings(settings)
    try:
        await transport.connect()
        await transport.declare_queue(settings.NOTIFICATION_QUEUE)
    except TransportException as e:
        logger.warning(f"RabbitMQ not reachable at startup, will retry on publish: {e.detail}")
    app.state.transport = transport

    consumer: Optional[NotificationConsumer] = None
    if settings.RUN_CONSUMER_IN_PROCESS:
        consumer = NotificationConsumer(
            database,
            QueueTransport.from_settings(settings),
            PushGatewayClient.from_settings(settings),
            settings,
        )
        await consumer.start()
        app.state.consumer = consumer

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")
    if consumer is not None:
        await consumer.stop()
        await consumer.transport.close()
    await transport.close()
    await database.close()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application; process-wide resources are attached by the lifespan"""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Notification relay: device directory and queued FCM push dispatch",
        version=settings.APP_VERSION,
        docs_url="/api-docs",
        lifespan=lifespan
    )
    app.state.settings = settings

    setup_middleware(app)
    setup_monitoring_middleware(app)
    register_exception_handlers(app)
    setup_health_endpoints(app)

    app.include_router(build_api_router(settings))

    return app


app = create_app()
