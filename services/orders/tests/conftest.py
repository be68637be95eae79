import json
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import set_session_factory
from app.main import create_app
from app.orders.constants import OrderStatus
from app.orders.exceptions import PublishError
from app.orders.models import Order  # noqa: F401 - register with Base
from app.orders.service import OrderService
from app.outbox.publisher import OutboxPublisher
from shared.database.postgres import Base, get_async_session_factory
from shared.events.schemas import OrderCreatedEvent

EXCHANGE = "order.exchange"
ROUTING_KEY = "order.created"


class FakeBroker:
    """In-memory broker: records confirmed publishes, can nack on demand."""

    def __init__(self) -> None:
        self.published: list[tuple[str, str, bytes, str | None]] = []
        self.calls = 0
        self.fail_first = 0
        self.always_fail = False

    async def publish(self, exchange, routing_key, body, *, message_id=None) -> None:
        self.calls += 1
        if self.always_fail or self.calls <= self.fail_first:
            raise PublishError("Broker nacked message")
        self.published.append((exchange, routing_key, body, message_id))

    def events(self) -> list[dict]:
        return [json.loads(body) for _, _, body, _ in self.published]


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_event(order_id: int = 1, user_id: int = 42) -> OrderCreatedEvent:
    return OrderCreatedEvent(
        order_id=order_id,
        user_id=user_id,
        order_number=f"ORD-{uuid4()}",
        status=OrderStatus.CREATED,
        created_at=datetime.now(timezone.utc),
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    factory = get_async_session_factory(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    engine = factory.kw["bind"]

    # Let SQLAlchemy own BEGIN so SAVEPOINTs behave as on Postgres.
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def sleeps() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def publisher(broker, sleeps) -> OutboxPublisher:
    return OutboxPublisher(broker, exchange=EXCHANGE, routing_key=ROUTING_KEY, sleep=sleeps)


@pytest.fixture
def publish_failures() -> list:
    return []


@pytest.fixture
def order_service(session_factory, publisher, publish_failures) -> OrderService:
    return OrderService(
        session_factory,
        publisher,
        on_publish_failure=publish_failures.append,
    )


@pytest_asyncio.fixture
async def async_client(session_factory, order_service) -> AsyncGenerator[AsyncClient, None]:
    app = create_app()
    app.state.order_service = order_service
    set_session_factory(session_factory)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    set_session_factory(None)


@pytest.fixture
def order_event():
    """Factory for valid OrderCreatedEvent values."""
    return make_event
