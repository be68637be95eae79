"""
Outbox publisher — sends committed domain events to the broker.

The broker client only has to offer ``publish(exchange, routing_key, body)``
returning once the broker has confirmed the message, and raising PublishError
on a nack, an unroutable return or a transport failure.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from shared.events.schemas import OrderCreatedEvent
from shared.utils.backoff import DEFAULT_BACKOFF, BackoffPolicy

from app.orders.exceptions import EventPublishingFailed, PublishError

logger = logging.getLogger(__name__)


class Broker(Protocol):
    async def publish(
        self,
        exchange: str,
        routing_key: str,
        body: bytes,
        *,
        message_id: str | None = None,
    ) -> None: ...


class OutboxPublisher:
    def __init__(
        self,
        broker: Broker,
        *,
        exchange: str,
        routing_key: str,
        backoff: BackoffPolicy = DEFAULT_BACKOFF,
        attempt_timeout: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._broker = broker
        self._exchange = exchange
        self._routing_key = routing_key
        self._backoff = backoff
        self._attempt_timeout = attempt_timeout
        self._sleep = sleep

    @property
    def destination(self) -> str:
        return f"{self._exchange}/{self._routing_key}"

    async def publish(self, event: OrderCreatedEvent) -> None:
        """Serialize and send ``event``, retrying PublishError with backoff.

        Raises EventPublishingFailed once every attempt has failed, or
        immediately if the event cannot be serialized.
        """
        try:
            body = event.to_wire()
        except (TypeError, ValueError) as exc:
            raise EventPublishingFailed(
                event.event_type, self.destination, event.order_number, 0, exc
            ) from exc

        max_attempts = self._backoff.max_attempts
        last_error: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                await self._send(body, message_id=event.order_number)
            except (PublishError, asyncio.TimeoutError) as exc:
                last_error = exc
                if attempt == max_attempts:
                    break
                delay = self._backoff.delay_for(attempt)
                logger.warning(
                    "Publish attempt %d/%d for order %s failed: %s; retrying in %.1fs",
                    attempt, max_attempts, event.order_number, exc, delay,
                )
                await self._sleep(delay)
            else:
                logger.info(
                    "Published %s for order %s to %s",
                    event.event_type, event.order_number, self.destination,
                )
                return

        raise EventPublishingFailed(
            event.event_type, self.destination, event.order_number, max_attempts, last_error
        ) from last_error

    async def _send(self, body: bytes, *, message_id: str) -> None:
        call = self._broker.publish(
            self._exchange, self._routing_key, body, message_id=message_id
        )
        if self._attempt_timeout is None:
            await call
        else:
            await asyncio.wait_for(call, timeout=self._attempt_timeout)


def log_publish_failure(exc: EventPublishingFailed) -> None:
    """Default failure reporter: leave a searchable trail for manual replay."""
    logger.error(
        "Event %s for order %s was not delivered to %s after %d attempt(s): %s",
        exc.event_type, exc.order_number, exc.destination, exc.attempts, exc.cause,
    )
