"""
Orders — static constants and enum types.
"""
from shared.constants.order_status import OrderStatus

__all__ = [
    "OrderStatus",
    "ORDER_NUMBER_PREFIX",
    "IDEMPOTENCY_KEY_MAX_LENGTH",
    "ORDER_NUMBER_MAX_LENGTH",
    "UQ_ORDER_NUMBER",
    "UQ_USER_IDEMPOTENCY_KEY",
]

ORDER_NUMBER_PREFIX = "ORD-"
ORDER_NUMBER_MAX_LENGTH = 64
IDEMPOTENCY_KEY_MAX_LENGTH = 255

# Unique constraint names. The repository maps IntegrityErrors back to these.
UQ_ORDER_NUMBER = "uq_orders_order_number"
UQ_USER_IDEMPOTENCY_KEY = "uq_orders_user_idempotency_key"
