"""
RabbitMQ topology for order events.

    order.exchange (topic) --order.created--> order-queue
    order-queue --dead-letter--> order.dlx (direct) --order.dead--> order-queue.dlq

Declarations are idempotent; both the API process and the notification
consumer declare the full topology on connect.
"""
from __future__ import annotations

from dataclasses import dataclass

from pika.exchange_type import ExchangeType


@dataclass(frozen=True)
class Topology:
    exchange: str = "order.exchange"
    routing_key: str = "order.created"
    queue: str = "order-queue"
    dead_letter_exchange: str = "order.dlx"
    dead_letter_queue: str = "order-queue.dlq"
    dead_letter_routing_key: str = "order.dead"

    @classmethod
    def from_settings(cls, settings) -> "Topology":
        return cls(
            exchange=settings.order_exchange_name,
            routing_key=settings.order_routing_key,
            queue=settings.order_queue_name,
            dead_letter_exchange=settings.dead_letter_exchange_name,
            dead_letter_queue=settings.dead_letter_queue_name,
            dead_letter_routing_key=settings.dead_letter_routing_key,
        )

    @property
    def queue_arguments(self) -> dict[str, str]:
        return {
            "x-dead-letter-exchange": self.dead_letter_exchange,
            "x-dead-letter-routing-key": self.dead_letter_routing_key,
        }


def declare_topology(channel, topology: Topology) -> None:
    """Declare exchanges, queues and bindings on a pika blocking channel."""
    channel.exchange_declare(
        exchange=topology.exchange,
        exchange_type=ExchangeType.topic,
        durable=True,
    )
    channel.exchange_declare(
        exchange=topology.dead_letter_exchange,
        exchange_type=ExchangeType.direct,
        durable=True,
    )

    channel.queue_declare(queue=topology.dead_letter_queue, durable=True)
    channel.queue_bind(
        queue=topology.dead_letter_queue,
        exchange=topology.dead_letter_exchange,
        routing_key=topology.dead_letter_routing_key,
    )

    channel.queue_declare(
        queue=topology.queue,
        durable=True,
        arguments=topology.queue_arguments,
    )
    channel.queue_bind(
        queue=topology.queue,
        exchange=topology.exchange,
        routing_key=topology.routing_key,
    )
