import asyncio
import json

import pytest

from app.orders.exceptions import EventPublishingFailed
from app.outbox.publisher import OutboxPublisher, log_publish_failure
from shared.utils.backoff import BackoffPolicy


@pytest.mark.asyncio
async def test_publish_sends_wire_payload(publisher, broker, order_event) -> None:
    event = order_event(order_id=3)
    await publisher.publish(event)

    exchange, routing_key, body, message_id = broker.published[0]
    assert (exchange, routing_key) == ("order.exchange", "order.created")
    assert json.loads(body)["orderId"] == 3
    assert message_id == event.order_number


@pytest.mark.asyncio
async def test_retries_with_exponential_backoff(publisher, broker, sleeps, order_event) -> None:
    broker.fail_first = 2
    await publisher.publish(order_event())

    assert broker.calls == 3
    assert len(broker.published) == 1
    assert sleeps.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_exhausted_retries_raise_event_publishing_failed(
    publisher, broker, sleeps, order_event
) -> None:
    broker.always_fail = True
    event = order_event()

    with pytest.raises(EventPublishingFailed) as info:
        await publisher.publish(event)

    assert info.value.attempts == 3
    assert info.value.order_number == event.order_number
    assert info.value.destination == "order.exchange/order.created"
    assert broker.calls == 3
    assert sleeps.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_delay_is_capped(broker, sleeps, order_event) -> None:
    broker.always_fail = True
    publisher = OutboxPublisher(
        broker,
        exchange="order.exchange",
        routing_key="order.created",
        backoff=BackoffPolicy(max_attempts=6),
        sleep=sleeps,
    )
    with pytest.raises(EventPublishingFailed):
        await publisher.publish(order_event())
    assert sleeps.delays == [1.0, 2.0, 4.0, 8.0, 10.0]


class _HangingBroker:
    def __init__(self) -> None:
        self.calls = 0

    async def publish(self, exchange, routing_key, body, *, message_id=None) -> None:
        self.calls += 1
        await asyncio.sleep(10)


@pytest.mark.asyncio
async def test_attempt_timeout_counts_as_failed_attempt(sleeps, order_event) -> None:
    broker = _HangingBroker()
    publisher = OutboxPublisher(
        broker,
        exchange="order.exchange",
        routing_key="order.created",
        attempt_timeout=0.01,
        sleep=sleeps,
    )
    with pytest.raises(EventPublishingFailed):
        await publisher.publish(order_event())
    assert broker.calls == 3


def test_default_reporter_logs_error(caplog, order_event) -> None:
    event = order_event()
    exc = EventPublishingFailed("order.created", "order.exchange/order.created", event.order_number, 3)
    with caplog.at_level("ERROR"):
        log_publish_failure(exc)
    assert event.order_number in caplog.text
    assert "3 attempt(s)" in caplog.text
