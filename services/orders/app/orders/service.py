"""
Orders — business logic.

Zero FastAPI imports. ``OrderService`` owns idempotent order creation and is
composed once at startup with the session factory and outbox publisher; the
read helpers below take a session like the rest of the codebase.

Creation flow (one transaction per call):
  1. validate input (no I/O on failure)
  2. look up (user_id, idempotency_key); return the existing order if found
  3. insert a CREATED order; a concurrent winner on the same key is re-read
  4. stage OrderCreatedEvent, commit, then publish outside the transaction
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.events.schemas import OrderCreatedEvent

from app.orders import repository
from app.orders.constants import IDEMPOTENCY_KEY_MAX_LENGTH, OrderStatus
from app.orders.exceptions import (
    ConstraintViolation,
    IdempotencyConflictResolved,
    IdempotencyKeyConflict,
    InvalidArgument,
    OrderCreationFailed,
    OrderNotFoundError,
)
from app.orders.models import Order, generate_order_number
from app.outbox.publisher import OutboxPublisher, log_publish_failure
from app.outbox.unit_of_work import FailureReporter, UnitOfWork

logger = logging.getLogger(__name__)


def validate_create_request(user_id, idempotency_key) -> None:
    # bool is an int subclass; True must not pass as user 1.
    if user_id is None or isinstance(user_id, bool) or not isinstance(user_id, int):
        raise InvalidArgument("user_id is required and must be an integer")
    if user_id <= 0:
        raise InvalidArgument("user_id must be positive")
    if idempotency_key is None or not isinstance(idempotency_key, str):
        raise InvalidArgument("idempotency_key is required")
    if not idempotency_key.strip():
        raise InvalidArgument("idempotency_key must not be blank")
    if len(idempotency_key) > IDEMPOTENCY_KEY_MAX_LENGTH:
        raise InvalidArgument(
            f"idempotency_key must be at most {IDEMPOTENCY_KEY_MAX_LENGTH} characters"
        )


def build_created_event(order: Order) -> OrderCreatedEvent:
    return OrderCreatedEvent(
        order_id=order.id,
        user_id=order.user_id,
        order_number=order.order_number,
        status=order.status,
        created_at=order.created_at,
    )


class OrderService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: OutboxPublisher,
        *,
        on_publish_failure: FailureReporter = log_publish_failure,
        timeout: float = 10.0,
    ) -> None:
        self._session_factory = session_factory
        self._publisher = publisher
        self._on_publish_failure = on_publish_failure
        self._timeout = timeout

    def unit_of_work(self) -> UnitOfWork:
        return UnitOfWork(
            self._session_factory,
            self._publisher,
            on_publish_failure=self._on_publish_failure,
        )

    async def create_order(self, user_id: int, idempotency_key: str) -> Order:
        """Create the order for (user_id, idempotency_key), or return the existing one.

        Raises InvalidArgument before any I/O, and OrderCreationFailed when the
        database fails or does not answer within the configured timeout.
        Publishing problems after commit never surface here.
        """
        validate_create_request(user_id, idempotency_key)
        logger.info(
            "Creating order for user %s with idempotency key %s", user_id, idempotency_key
        )

        async with self.unit_of_work() as uow:
            try:
                order, created = await asyncio.wait_for(
                    self._prepare(uow, user_id, idempotency_key),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError as exc:
                logger.error(
                    "Order creation for user %s timed out after %.1fs", user_id, self._timeout
                )
                raise OrderCreationFailed("Order creation timed out") from exc
            except SQLAlchemyError as exc:
                logger.exception("Database error creating order for user %s", user_id)
                raise OrderCreationFailed() from exc

            # Outside the timeout: a commit that lands late must still hand its
            # staged event to the publisher. Idempotent hits commit as well; a
            # rollback would expire the row being returned.
            try:
                await uow.commit()
            except SQLAlchemyError as exc:
                logger.exception("Commit failed for order of user %s", user_id)
                raise OrderCreationFailed() from exc

        if created:
            logger.info("Order created: %s (id=%s)", order.order_number, order.id)
        return order

    async def _prepare(
        self, uow: UnitOfWork, user_id: int, idempotency_key: str
    ) -> tuple[Order, bool]:
        """Lookup and insert under the caller's open transaction; returns (order, created)."""
        db = uow.session
        existing = await repository.find_by_owner_and_key(db, user_id, idempotency_key)
        if existing is not None:
            logger.info(
                "Returning existing order %s for idempotency key %s",
                existing.order_number, idempotency_key,
            )
            return existing, False

        try:
            order = await self._insert(db, user_id, idempotency_key)
        except IdempotencyConflictResolved as resolved:
            logger.info(
                "Concurrent request created order %s for idempotency key %s",
                resolved.order.order_number, idempotency_key,
            )
            return resolved.order, False

        uow.stage(build_created_event(order))
        return order, True

    async def _insert(self, db: AsyncSession, user_id: int, idempotency_key: str) -> Order:
        now = datetime.now(timezone.utc)
        order = Order(
            user_id=user_id,
            idempotency_key=idempotency_key,
            order_number=generate_order_number(),
            status=OrderStatus.CREATED,
            created_at=now,
            updated_at=now,
        )
        try:
            return await repository.insert(db, order)
        except IdempotencyKeyConflict as exc:
            winner = await repository.find_by_owner_and_key(db, user_id, idempotency_key)
            if winner is None:
                raise OrderCreationFailed(
                    "Idempotency conflict could not be resolved"
                ) from exc
            raise IdempotencyConflictResolved(winner) from exc
        except ConstraintViolation as exc:
            logger.error("Order insert rejected for user %s: %s", user_id, exc)
            raise OrderCreationFailed() from exc


# ── Queries ──────────────────────────────────────────────────────────────────

async def get_order(db: AsyncSession, order_id: int) -> Order:
    order = await repository.get_by_id(db, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


async def get_order_by_number(db: AsyncSession, order_number: str) -> Order:
    order = await repository.get_by_order_number(db, order_number)
    if order is None:
        raise OrderNotFoundError(order_number)
    return order


async def list_user_orders(
    db: AsyncSession,
    user_id: int,
    *,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Order], int]:
    return await repository.list_by_user(db, user_id, page=page, page_size=page_size)


async def list_orders_by_status(
    db: AsyncSession,
    status: OrderStatus,
    *,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Order], int]:
    return await repository.list_by_status(db, status, page=page, page_size=page_size)


async def count_user_orders(db: AsyncSession, user_id: int) -> int:
    return await repository.count_by_user(db, user_id)
