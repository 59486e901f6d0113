"""
Shared pytest fixtures.

Each test gets its own file-backed SQLite database, a recording stand-in for
the queue transport and a mocked push gateway. API tests talk to the app
through httpx without running the lifespan; resources are attached to
app.state directly.
"""
import asyncio
from dataclasses import dataclass
import itertools
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from relay.core.config import Settings
from relay.core.database import Database
from relay.core.exceptions import TransportException
from relay.core.security import SecurityUtils
from relay.main import create_app
from relay.models import Device, DevicePlatform, User
from relay.services.push_gateway import PushGatewayClient

_seq = itertools.count(1)


@dataclass
class PublishedMessage:
    target: str
    message: Dict[str, Any]
    routing_key: Optional[str] = None


class RecordingTransport:
    """In-process stand-in for QueueTransport that records what gets published"""

    def __init__(self):
        self.published: List[PublishedMessage] = []
        self.queues: List[str] = []
        self.exchanges: Dict[str, str] = {}
        self.handler = None
        self.consumed_from: Optional[str] = None
        self.cancelled = False
        self.closed = False
        # Knobs for failure tests
        self.fail_all = False
        self.fail_calls: set = set()
        self.nack = False
        self.consume_error: Optional[BaseException] = None
        self._calls = 0
        self._consume_ended = asyncio.Event()

    async def connect(self):
        return None

    async def declare_queue(self, name):
        self.queues.append(name)

    async def declare_exchange(self, name, kind="direct"):
        self.exchanges[name] = kind

    async def publish(self, target, message, routing_key=None, headers=None):
        self._calls += 1
        if self.fail_all or self._calls in self.fail_calls:
            raise TransportException("Failed to publish message: broker unreachable")
        if self.nack:
            return False
        self.published.append(PublishedMessage(target, message, routing_key))
        return True

    async def consume(self, source, handler, routing_key=None, queue_name=None):
        self.consumed_from = source
        self.handler = handler

    async def wait_consuming(self):
        await self._consume_ended.wait()
        if self.consume_error is not None:
            raise self.consume_error

    def end_consuming(self, error: Optional[BaseException] = None):
        """Simulate the consume loop exiting on its own"""
        self.consume_error = error
        self._consume_ended.set()

    async def cancel(self):
        self.cancelled = True
        self._consume_ended.set()

    async def close(self):
        self.closed = True

    def to(self, target: str) -> List[PublishedMessage]:
        return [p for p in self.published if p.target == target]


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from any local .env file"""
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'relay.db'}",
        SECRET_KEY="test-secret-key",
        AUTH_REQUIRED=True,
        DEVICE_OWNERSHIP_ENABLED=True,
        NOTIFICATION_HISTORY_ENABLED=True,
        NOTIFICATION_QUEUE="test.notification.fcm",
        DONE_EXCHANGE="test.notification.done",
        QUEUE_POLL_INTERVAL_SECONDS=0.05,
        GATEWAY_TIMEOUT_SECONDS=1.0,
    )


@pytest_asyncio.fixture
async def database(settings):
    db = Database(settings)
    await db.init_models()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def db_session(database):
    async with database.session_factory() as session:
        yield session


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def gateway():
    client = AsyncMock(spec=PushGatewayClient)
    client.send.return_value = "projects/relay-test/messages/0:1700000000000000%abc"
    return client


async def create_user(session, **overrides) -> User:
    values = {
        "name": "Test User",
        "email": f"user{next(_seq)}@example.com",
        "is_active": True,
    }
    values.update(overrides)
    user = User(**values)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def create_device(session, **overrides) -> Device:
    values = {
        "device_token": f"token-{next(_seq)}",
        "platform": DevicePlatform.ANDROID,
        "is_active": True,
    }
    values.update(overrides)
    device = Device(**values)
    session.add(device)
    await session.commit()
    await session.refresh(device)
    return device


@pytest.fixture
def make_user(db_session):
    async def _make(**overrides):
        return await create_user(db_session, **overrides)
    return _make


@pytest.fixture
def make_device(db_session):
    async def _make(**overrides):
        return await create_device(db_session, **overrides)
    return _make


@pytest_asyncio.fixture
async def client(settings, database, transport):
    app = create_app(settings)
    app.state.database = database
    app.state.transport = transport
    async with AsyncClient(
        transport=ASGITransport(app=app, raise_app_exceptions=False),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def auth_headers(settings):
    token = SecurityUtils.create_access_token({"sub": "1", "email": "ops@example.com"}, settings)
    return {"Authorization": f"Bearer {token}"}
