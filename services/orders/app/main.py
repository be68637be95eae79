import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.broker.rabbitmq import RabbitMQBroker
from app.config import Settings
from app.database import dispose_db, init_db
from app.orders.router import router as orders_router
from app.orders.service import OrderService
from app.outbox.publisher import OutboxPublisher
from shared.middleware.error_handler import (
    error_envelope_middleware,
    http_error_envelope_handler,
)
from shared.middleware.request_id import RequestIdFilter, request_id_middleware

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s:%(name)s: [%(request_id)s] %(message)s",
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RequestIdFilter) for f in handler.filters):
            handler.addFilter(RequestIdFilter())


# ── OpenAPI metadata ──────────────────────────────────────────────────────────

_DESCRIPTION = """
## Orders Service

Idempotent order creation with after-commit event publication.

* **Create** — `POST /api/v1/orders` with a user id and an idempotency key.
  Retrying with the same pair returns the original order; exactly one row and
  one `order.created` event exist per pair.
* **Events** — `order.created` is published to RabbitMQ only after the order
  is committed. A broker outage never fails the request; the failure is logged
  for replay.
* **Lookups** — by id, by order number, and paginated per user.

### Error shape
All errors return a consistent JSON envelope:
```json
{ "error": { "code": "...", "message": "..." }, "request_id": "..." }
```
"""

_TAGS_METADATA = [
    {
        "name": "orders",
        "description": "Create orders and look them up.",
    },
]


# ── Health schema ─────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str
    service: str


# ── App factory ───────────────────────────────────────────────────────────────

def get_settings() -> Settings:
    return Settings()


def build_order_service(settings: Settings, session_factory, broker) -> OrderService:
    publisher = OutboxPublisher(
        broker,
        exchange=settings.order_exchange_name,
        routing_key=settings.order_routing_key,
        backoff=settings.publish_backoff,
        attempt_timeout=settings.rabbitmq_connection_timeout_seconds * 2,
    )
    return OrderService(
        session_factory,
        publisher,
        timeout=settings.order_creation_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    session_factory = init_db(settings.orders_database_url)
    broker = RabbitMQBroker.from_settings(settings)
    app.state.order_service = build_order_service(settings, session_factory, broker)
    logger.info("Orders service started (env=%s)", settings.env_name)
    yield
    await broker.close()
    await dispose_db()


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(
        title="Orders Service",
        version="1.0.0",
        description=_DESCRIPTION,
        openapi_tags=_TAGS_METADATA,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Middleware (applied in reverse-registration order: last added = outermost)
    app.middleware("http")(error_envelope_middleware)
    app.middleware("http")(request_id_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    app.add_exception_handler(StarletteHTTPException, http_error_envelope_handler)

    app.include_router(orders_router, prefix="/api/v1")

    @app.get("/health", response_model=HealthResponse, tags=["health"], include_in_schema=True)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", service="orders")

    return app


app = create_app()
