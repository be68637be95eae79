"""
Notification handling for order.created events.

Runs inside the blocking consumer loop, so retries sleep synchronously.
Handling is at-least-once safe: a Redis marker keyed by order id is claimed
before dispatch and released again if the dispatch fails, so a redelivered
message is only notified once.
"""
from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable, Sequence

import redis
from pydantic import ValidationError

from shared.events.schemas import OrderCreatedEvent
from shared.utils.backoff import DEFAULT_BACKOFF, BackoffPolicy

from app.notifications.channels import NotificationChannel
from app.notifications.exceptions import NotificationDispatchFailed, NotificationError

logger = logging.getLogger(__name__)


class HandleOutcome(str, enum.Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    INVALID = "invalid"
    FAILED = "failed"


def order_created_message(event: OrderCreatedEvent) -> str:
    return f"Your order {event.order_number} has been created! Order ID: {event.order_id}"


# ── Dispatch ─────────────────────────────────────────────────────────────────

class NotificationDispatcher:
    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        *,
        backoff: BackoffPolicy = DEFAULT_BACKOFF,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._channels = list(channels)
        self._backoff = backoff
        self._sleep = sleep

    def dispatch(self, user_id: int, message: str) -> None:
        """Send ``message`` on every channel; raise if any channel ultimately failed."""
        failures: dict[str, NotificationError] = {}
        for channel in self._channels:
            try:
                self._send_with_retry(channel, user_id, message)
            except NotificationError as exc:
                failures[channel.name] = exc
        if failures:
            raise NotificationDispatchFailed(user_id, failures)

    def _send_with_retry(self, channel: NotificationChannel, user_id: int, message: str) -> None:
        max_attempts = self._backoff.max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                channel.send(user_id, message)
                return
            except NotificationError as exc:
                if not exc.retryable or attempt == max_attempts:
                    logger.error(
                        "%s notification to user %s failed after %d attempt(s): [%s] %s",
                        channel.name, user_id, attempt, exc.code, exc,
                    )
                    raise
                delay = self._backoff.delay_for(attempt)
                logger.warning(
                    "%s notification to user %s failed (%s); retrying in %.1fs",
                    channel.name, user_id, exc.code, delay,
                )
                self._sleep(delay)


# ── Duplicate suppression ────────────────────────────────────────────────────

class DedupStore:
    """Per-order "already notified" markers in Redis (``SET NX EX``)."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        ttl_seconds: int = 86_400,
        prefix: str = "notify:order-created",
    ) -> None:
        self._client = client
        self._ttl = ttl_seconds
        self._prefix = prefix

    def _key(self, order_id: int) -> str:
        return f"{self._prefix}:{order_id}"

    def claim(self, order_id: int) -> bool:
        return bool(self._client.set(self._key(order_id), "1", nx=True, ex=self._ttl))

    def release(self, order_id: int) -> None:
        self._client.delete(self._key(order_id))


# ── Message handling ─────────────────────────────────────────────────────────

def handle_order_created(
    body: bytes,
    dispatcher: NotificationDispatcher,
    dedup: DedupStore,
) -> HandleOutcome:
    try:
        event = OrderCreatedEvent.from_wire(body)
    except ValidationError as exc:
        logger.warning("Rejecting invalid order.created payload: %s", exc.errors(include_url=False))
        return HandleOutcome.INVALID

    logger.info("Received order created event: %s", event.order_number)
    if not dedup.claim(event.order_id):
        logger.info("Order %s already notified; skipping duplicate", event.order_number)
        return HandleOutcome.DUPLICATE

    delivered = False
    try:
        dispatcher.dispatch(event.user_id, order_created_message(event))
        delivered = True
    except NotificationDispatchFailed as exc:
        logger.error("Notification for order %s failed: %s", event.order_number, exc)
        return HandleOutcome.FAILED
    finally:
        # Any failure leaves the order unnotified, so a replay must not be
        # mistaken for a duplicate.
        if not delivered:
            dedup.release(event.order_id)

    logger.info("Notifications sent for order %s", event.order_number)
    return HandleOutcome.PROCESSED
