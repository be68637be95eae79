import enum


class OrderStatus(str, enum.Enum):
    """Order lifecycle states. Stored and sent on the wire by value."""

    CREATED = "CREATED"
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS: dict[OrderStatus, str] = {
    OrderStatus.CREATED: "Order has been created",
    OrderStatus.PENDING: "Order is pending processing",
    OrderStatus.CONFIRMED: "Order has been confirmed",
    OrderStatus.SHIPPED: "Order has been shipped",
    OrderStatus.DELIVERED: "Order has been delivered",
    OrderStatus.CANCELLED: "Order has been cancelled",
}
