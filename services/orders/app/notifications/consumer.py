"""
Notification consumer — long-running RabbitMQ worker.

Usage (from services/orders):
    python -m app.notifications.consumer

Consumes order-queue with manual acks and a bounded prefetch:
  processed / duplicate  -> ack
  invalid / failed       -> reject without requeue (dead-lettered to order-queue.dlq)
  Redis unavailable      -> nack with requeue (retried on redelivery)

A dropped broker connection is re-established with exponential backoff; the
failure count resets once a connection reaches the consuming state.
"""
from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Callable

import pika
import redis
from pika.exceptions import AMQPConnectionError

from shared.database.redis_client import get_redis_client
from shared.utils.backoff import DEFAULT_BACKOFF, BackoffPolicy

from app.broker.rabbitmq import build_connection_parameters
from app.broker.topology import Topology, declare_topology
from app.config import Settings
from app.notifications.channels import EmailChannel, SmsChannel
from app.notifications.service import (
    DedupStore,
    HandleOutcome,
    NotificationDispatcher,
    handle_order_created,
)

logger = logging.getLogger(__name__)


class OrderCreatedConsumer:
    def __init__(
        self,
        parameters: pika.ConnectionParameters,
        topology: Topology,
        dispatcher: NotificationDispatcher,
        dedup: DedupStore,
        *,
        prefetch_count: int = 10,
        connection_factory=pika.BlockingConnection,
        reconnect_backoff: BackoffPolicy = DEFAULT_BACKOFF,
        max_reconnects: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._parameters = parameters
        self._topology = topology
        self._dispatcher = dispatcher
        self._dedup = dedup
        self._prefetch_count = prefetch_count
        self._connection_factory = connection_factory
        self._reconnect_backoff = reconnect_backoff
        self._max_reconnects = max_reconnects
        self._sleep = sleep
        self._connected = False
        self.stats: Counter[str] = Counter()

    def on_message(self, channel, method, properties, body: bytes) -> None:
        tag = method.delivery_tag
        try:
            outcome = handle_order_created(body, self._dispatcher, self._dedup)
        except redis.RedisError:
            logger.exception("Redis unavailable; requeueing delivery %s", tag)
            self.stats["requeued"] += 1
            channel.basic_nack(delivery_tag=tag, requeue=True)
            return
        except Exception:
            logger.exception("Unexpected error handling delivery %s; dead-lettering", tag)
            self.stats[HandleOutcome.FAILED.value] += 1
            channel.basic_reject(delivery_tag=tag, requeue=False)
            return

        self.stats[outcome.value] += 1
        if outcome in (HandleOutcome.PROCESSED, HandleOutcome.DUPLICATE):
            channel.basic_ack(delivery_tag=tag)
        else:
            channel.basic_reject(delivery_tag=tag, requeue=False)

    def run(self) -> None:
        """Consume until interrupted, reconnecting with backoff when the broker drops."""
        failures = 0
        while True:
            try:
                self._consume()
                return
            except AMQPConnectionError as exc:
                failures = 0 if self._connected else failures
                failures += 1
                if self._max_reconnects is not None and failures > self._max_reconnects:
                    logger.error("Giving up on broker after %d failed connection(s)", failures)
                    raise
                delay = self._reconnect_backoff.delay_for(failures)
                logger.warning(
                    "Broker connection lost (%s); reconnecting in %.1fs", exc, delay
                )
                self._sleep(delay)

    def _consume(self) -> None:
        self._connected = False
        connection = self._connection_factory(self._parameters)
        try:
            channel = connection.channel()
            declare_topology(channel, self._topology)
            channel.basic_qos(prefetch_count=self._prefetch_count)
            channel.basic_consume(
                queue=self._topology.queue,
                on_message_callback=self.on_message,
                auto_ack=False,
            )
            self._connected = True
            logger.info(
                "Consuming %s (prefetch=%d)", self._topology.queue, self._prefetch_count
            )
            try:
                channel.start_consuming()
            except KeyboardInterrupt:
                channel.stop_consuming()
        finally:
            if connection.is_open:
                connection.close()
            logger.info("Consumer stopped: %s", dict(self.stats))


def build_consumer(settings: Settings) -> OrderCreatedConsumer:
    parameters = build_connection_parameters(
        settings.rabbitmq_url,
        connection_name=f"{settings.rabbitmq_connection_name}-notifications",
        heartbeat=settings.rabbitmq_heartbeat_seconds,
        connection_timeout=settings.rabbitmq_connection_timeout_seconds,
    )
    dispatcher = NotificationDispatcher(
        [EmailChannel(), SmsChannel()],
        backoff=settings.publish_backoff,
    )
    dedup = DedupStore(
        get_redis_client(settings.redis_url),
        ttl_seconds=settings.notification_dedup_ttl_seconds,
    )
    return OrderCreatedConsumer(
        parameters,
        Topology.from_settings(settings),
        dispatcher,
        dedup,
        prefetch_count=settings.consumer_prefetch_count,
    )


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s: %(message)s")
    build_consumer(Settings()).run()


if __name__ == "__main__":
    main()
