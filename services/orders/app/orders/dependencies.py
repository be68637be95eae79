"""
Orders — request dependencies.

Collaborators are composed once in the app lifespan and stored on app.state.
"""
from fastapi import Request

from app.orders.service import OrderService


def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service
