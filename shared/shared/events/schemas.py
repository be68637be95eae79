from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field

from shared.constants.order_status import OrderStatus

ORDER_NUMBER_PATTERN = r"^ORD-[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"


class OrderCreatedEvent(BaseModel):
    """RabbitMQ event: order persisted and committed.

    The JSON shape (camelCase keys, ISO-8601 ``createdAt``) is the contract
    notification consumers depend on. Do not rename fields.
    """

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        populate_by_name=True,
    )

    event_type: ClassVar[str] = "order.created"

    order_id: int = Field(gt=0, alias="orderId")
    user_id: int = Field(gt=0, alias="userId")
    order_number: str = Field(pattern=ORDER_NUMBER_PATTERN, alias="orderNumber")
    status: OrderStatus
    created_at: datetime = Field(alias="createdAt")

    def to_wire(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_wire(cls, body: bytes | str) -> "OrderCreatedEvent":
        return cls.model_validate_json(body)
