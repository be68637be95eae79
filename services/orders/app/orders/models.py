"""
Order ORM model — SQLAlchemy 2.0 async.

Tables owned by this module:
  - orders    One row per logical order. (user_id, idempotency_key) and
              order_number are both unique; the first is what makes order
              creation safe to retry.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base

from app.orders.constants import (
    IDEMPOTENCY_KEY_MAX_LENGTH,
    ORDER_NUMBER_MAX_LENGTH,
    ORDER_NUMBER_PREFIX,
    UQ_ORDER_NUMBER,
    UQ_USER_IDEMPOTENCY_KEY,
    OrderStatus,
)


def generate_order_number() -> str:
    return f"{ORDER_NUMBER_PREFIX}{uuid.uuid4()}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# BIGINT identity on Postgres; SQLite only auto-increments INTEGER PRIMARY KEY.
_ORDER_ID = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        sa.UniqueConstraint("order_number", name=UQ_ORDER_NUMBER),
        sa.UniqueConstraint("user_id", "idempotency_key", name=UQ_USER_IDEMPOTENCY_KEY),
        sa.Index("ix_orders_user_id_created_at", "user_id", "created_at"),
        sa.Index("ix_orders_status_created_at", "status", "created_at"),
        sa.CheckConstraint("user_id > 0", name="user_id_positive"),
    )

    id: Mapped[int] = mapped_column(_ORDER_ID, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(sa.BigInteger(), nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        sa.Enum(
            OrderStatus,
            name="orderstatus",
            values_callable=lambda e: [x.value for x in e],
            validate_strings=True,
        ),
        nullable=False,
        default=OrderStatus.CREATED,
    )
    # Immutable once assigned; never updated by any code path.
    order_number: Mapped[str] = mapped_column(
        sa.String(ORDER_NUMBER_MAX_LENGTH),
        nullable=False,
        default=generate_order_number,
    )
    idempotency_key: Mapped[str] = mapped_column(
        sa.String(IDEMPOTENCY_KEY_MAX_LENGTH), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<Order {self.id} {self.order_number} user={self.user_id} status={self.status}>"
