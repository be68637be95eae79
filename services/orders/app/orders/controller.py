"""
Orders — controller layer.

Receives validated input from the router, calls the service, and converts
domain exceptions into HTTP exceptions.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from app.exceptions import InvalidOrderRequest, OrderCreationUnavailable, OrderNotFound
from app.orders import service
from app.orders.exceptions import InvalidArgument, OrderCreationFailed, OrderNotFoundError
from app.orders.schemas import CreateOrderRequest, OrderListResponse, OrderResponse

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from app.orders.service import OrderService

logger = logging.getLogger(__name__)


async def create_order(
    request: CreateOrderRequest,
    idempotency_key_header: str | None,
    order_service: OrderService,
) -> OrderResponse:
    header_key = idempotency_key_header.strip() if idempotency_key_header is not None else None
    key = request.idempotency_key or header_key
    if request.idempotency_key and header_key and request.idempotency_key != header_key:
        raise InvalidOrderRequest("Idempotency-Key header does not match idempotency_key in body.")

    try:
        order = await order_service.create_order(request.user_id, key)
    except InvalidArgument as exc:
        raise InvalidOrderRequest(str(exc))
    except OrderCreationFailed:
        raise OrderCreationUnavailable()
    return OrderResponse.model_validate(order)


async def get_order(order_id: int, db: AsyncSession) -> OrderResponse:
    try:
        order = await service.get_order(db, order_id)
    except OrderNotFoundError:
        raise OrderNotFound()
    return OrderResponse.model_validate(order)


async def get_order_by_number(order_number: str, db: AsyncSession) -> OrderResponse:
    try:
        order = await service.get_order_by_number(db, order_number)
    except OrderNotFoundError:
        raise OrderNotFound()
    return OrderResponse.model_validate(order)


async def list_user_orders(
    user_id: int,
    db: AsyncSession,
    *,
    page: int,
    page_size: int,
) -> OrderListResponse:
    items, total = await service.list_user_orders(db, user_id, page=page, page_size=page_size)
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in items],
        total=total,
        page=page,
        page_size=page_size,
    )
