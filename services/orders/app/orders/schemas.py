"""
Orders — Pydantic V2 request/response schemas.
"""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field

from shared.models.pagination import PaginatedResponse

from app.orders.constants import IDEMPOTENCY_KEY_MAX_LENGTH, OrderStatus


# ── Base ─────────────────────────────────────────────────────────────────────

class _Base(BaseModel):
    model_config = ConfigDict(
        str_strip_whitespace=True,
        extra="forbid",
    )


# ── Requests ─────────────────────────────────────────────────────────────────

class CreateOrderRequest(_Base):
    """Create an order. Repeating the request with the same key returns the same order."""
    user_id: int = Field(gt=0, description="Owning user's identifier")
    idempotency_key: str | None = Field(
        default=None,
        min_length=1,
        max_length=IDEMPOTENCY_KEY_MAX_LENGTH,
        description="Client-chosen key; may be sent as the Idempotency-Key header instead",
    )


# ── Responses ────────────────────────────────────────────────────────────────

class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    order_number: str
    status: OrderStatus
    created_at: datetime

    @computed_field
    @property
    def status_description(self) -> str:
        return self.status.description


class OrderListResponse(PaginatedResponse[OrderResponse]):
    pass
