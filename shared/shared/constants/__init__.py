from shared.constants.order_status import OrderStatus

__all__ = ["OrderStatus"]
