"""
Orders — persistence helpers.

Zero FastAPI imports. Every function takes the session as its first argument
and never commits; transaction boundaries belong to the caller.
"""
from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.orders.constants import UQ_ORDER_NUMBER, UQ_USER_IDEMPOTENCY_KEY, OrderStatus
from app.orders.exceptions import (
    ConstraintViolation,
    IdempotencyKeyConflict,
    OrderNumberConflict,
)
from app.orders.models import Order

logger = logging.getLogger(__name__)

# SQLite reports the violated columns instead of the constraint name.
_SQLITE_UNIQUE_COLUMNS = {
    UQ_USER_IDEMPOTENCY_KEY: "orders.user_id, orders.idempotency_key",
    UQ_ORDER_NUMBER: "orders.order_number",
}


def violated_constraint(exc: IntegrityError) -> str | None:
    """Name of the unique constraint behind ``exc``, or None if unknown.

    asyncpg exposes ``constraint_name`` on the driver exception (chained as
    ``__cause__`` of the DBAPI adapter error); Postgres also quotes the name in
    the message. SQLite only lists the columns.
    """
    orig = exc.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        name = getattr(candidate, "constraint_name", None)
        if name:
            return name

    message = str(orig)
    for name in (UQ_USER_IDEMPOTENCY_KEY, UQ_ORDER_NUMBER):
        if f'"{name}"' in message:
            return name
    for name, columns in _SQLITE_UNIQUE_COLUMNS.items():
        if f"UNIQUE constraint failed: {columns}" in message:
            return name
    return None


def classify_integrity_error(exc: IntegrityError, order: Order) -> ConstraintViolation:
    constraint = violated_constraint(exc)
    if constraint == UQ_USER_IDEMPOTENCY_KEY:
        return IdempotencyKeyConflict(order.user_id, order.idempotency_key)
    if constraint == UQ_ORDER_NUMBER:
        return OrderNumberConflict(order.order_number)
    return ConstraintViolation(constraint, str(exc.orig))


# ── Writes ───────────────────────────────────────────────────────────────────

async def insert(db: AsyncSession, order: Order) -> Order:
    """Flush ``order`` inside a SAVEPOINT.

    Raises IdempotencyKeyConflict, OrderNumberConflict or a generic
    ConstraintViolation. On failure only the savepoint is rolled back, so the
    enclosing transaction stays usable for a follow-up lookup.
    """
    try:
        async with db.begin_nested():
            db.add(order)
            await db.flush()
    except IntegrityError as exc:
        if order in db:
            db.expunge(order)
        raise classify_integrity_error(exc, order) from exc
    return order


# ── Lookups ──────────────────────────────────────────────────────────────────

async def find_by_owner_and_key(
    db: AsyncSession,
    user_id: int,
    idempotency_key: str,
) -> Order | None:
    """Point lookup on the (user_id, idempotency_key) unique index."""
    result = await db.execute(
        select(Order).where(
            Order.user_id == user_id,
            Order.idempotency_key == idempotency_key,
        )
    )
    return result.scalar_one_or_none()


async def get_by_id(db: AsyncSession, order_id: int) -> Order | None:
    return await db.get(Order, order_id)


async def get_by_order_number(db: AsyncSession, order_number: str) -> Order | None:
    result = await db.execute(select(Order).where(Order.order_number == order_number))
    return result.scalar_one_or_none()


async def list_by_user(
    db: AsyncSession,
    user_id: int,
    *,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Order], int]:
    """Paginated orders for a user, newest first, with the total count."""
    total = await count_by_user(db, user_id)
    offset = (page - 1) * page_size
    result = await db.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(offset)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


async def list_by_status(
    db: AsyncSession,
    status: OrderStatus,
    *,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Order], int]:
    count_q = select(func.count()).select_from(Order).where(Order.status == status)
    total = (await db.execute(count_q)).scalar() or 0

    offset = (page - 1) * page_size
    result = await db.execute(
        select(Order)
        .where(Order.status == status)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(offset)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


async def count_by_user(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        select(func.count()).select_from(Order).where(Order.user_id == user_id)
    )
    return result.scalar() or 0
