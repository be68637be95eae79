"""
Orders — HTTP routes.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.orders import controller
from app.orders.dependencies import get_order_service
from app.orders.schemas import CreateOrderRequest, OrderListResponse, OrderResponse
from app.orders.service import OrderService

router = APIRouter(tags=["orders"])


@router.post(
    "/orders",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an order",
    description=(
        "Creates an order in CREATED status and publishes an order.created event "
        "after the order is committed. Repeating the request with the same user "
        "and idempotency key returns the original order without a second event. "
        "The key may be sent in the body or as the Idempotency-Key header."
    ),
)
async def create_order(
    request: CreateOrderRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    order_service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    return await controller.create_order(request, idempotency_key, order_service)


@router.get(
    "/orders/by-number/{order_number}",
    response_model=OrderResponse,
    summary="Get an order by order number",
)
async def get_order_by_number(
    order_number: str = Path(min_length=1, max_length=64),
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    return await controller.get_order_by_number(order_number, db)


@router.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    summary="Get an order by id",
)
async def get_order(
    order_id: int = Path(gt=0),
    db: AsyncSession = Depends(get_db),
) -> OrderResponse:
    return await controller.get_order(order_id, db)


@router.get(
    "/users/{user_id}/orders",
    response_model=OrderListResponse,
    summary="List a user's orders",
    description="Newest first, paginated.",
)
async def list_user_orders(
    user_id: int = Path(gt=0),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> OrderListResponse:
    return await controller.list_user_orders(user_id, db, page=page, page_size=page_size)
