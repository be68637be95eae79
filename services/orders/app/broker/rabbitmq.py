"""
RabbitMQ broker client built on pika's BlockingConnection.

Publishing uses publisher confirms and ``mandatory=True``: ``basic_publish``
returns only once the broker has acked the message, and raises if it was
nacked or could not be routed to any queue. pika's blocking adapter is not
thread-safe, so every channel operation runs under one lock in the default
executor.
"""
from __future__ import annotations

import asyncio
import logging
import threading

import pika
from pika.exceptions import AMQPError, NackError, UnroutableError

from app.broker.topology import Topology, declare_topology
from app.orders.exceptions import PublishError

logger = logging.getLogger(__name__)


def build_connection_parameters(
    url: str,
    *,
    connection_name: str,
    heartbeat: int = 30,
    connection_timeout: float = 5.0,
) -> pika.URLParameters:
    params = pika.URLParameters(url)
    params.heartbeat = heartbeat
    params.socket_timeout = connection_timeout
    params.blocked_connection_timeout = connection_timeout * 6
    params.client_properties = {"connection_name": connection_name}
    return params


class RabbitMQBroker:
    def __init__(
        self,
        parameters: pika.ConnectionParameters,
        topology: Topology,
        *,
        connection_factory=pika.BlockingConnection,
    ) -> None:
        self._parameters = parameters
        self._topology = topology
        self._connection_factory = connection_factory
        self._connection = None
        self._channel = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "RabbitMQBroker":
        params = build_connection_parameters(
            settings.rabbitmq_url,
            connection_name=settings.rabbitmq_connection_name,
            heartbeat=settings.rabbitmq_heartbeat_seconds,
            connection_timeout=settings.rabbitmq_connection_timeout_seconds,
        )
        return cls(params, Topology.from_settings(settings))

    # ── async surface ────────────────────────────────────────────────────────

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        *,
        message_id: str | None = None,
    ) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: self.publish_blocking(exchange, routing_key, body, message_id=message_id),
        )

    async def close(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.close_blocking)

    # ── blocking implementation ─────────────────────────────────────────────

    def publish_blocking(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        *,
        message_id: str | None = None,
    ) -> None:
        properties = pika.BasicProperties(
            content_type="application/json",
            delivery_mode=pika.DeliveryMode.Persistent,
            message_id=message_id,
        )
        with self._lock:
            try:
                channel = self._ensure_channel()
                channel.basic_publish(
                    exchange=exchange,
                    routing_key=routing_key,
                    body=body,
                    properties=properties,
                    mandatory=True,
                )
            except UnroutableError as exc:
                raise PublishError(
                    f"Message unroutable on {exchange}/{routing_key}"
                ) from exc
            except NackError as exc:
                raise PublishError(f"Broker nacked message on {exchange}/{routing_key}") from exc
            except AMQPError as exc:
                logger.warning("RabbitMQ connection lost: %r", exc)
                self._reset()
                raise PublishError(f"Broker unavailable: {exc!r}") from exc

    def close_blocking(self) -> None:
        with self._lock:
            if self._connection is not None and self._connection.is_open:
                self._connection.close()
            self._connection = None
            self._channel = None

    def _ensure_channel(self):
        if self._channel is not None and self._channel.is_open:
            return self._channel
        if self._connection is None or not self._connection.is_open:
            self._connection = self._connection_factory(self._parameters)
            logger.info("Connected to RabbitMQ")
        channel = self._connection.channel()
        channel.confirm_delivery()
        declare_topology(channel, self._topology)
        self._channel = channel
        return channel

    def _reset(self) -> None:
        connection, self._connection, self._channel = self._connection, None, None
        if connection is not None and connection.is_open:
            try:
                connection.close()
            except AMQPError:
                logger.debug("Ignoring error while closing a broken connection", exc_info=True)
