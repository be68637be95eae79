import json

import pytest
import redis
from pika.exceptions import AMQPConnectionError, StreamLostError

from app.notifications.channels import EmailChannel, SmsChannel
from app.notifications.consumer import OrderCreatedConsumer
from app.notifications.exceptions import (
    InvalidRecipient,
    NetworkTimeout,
    NotificationDispatchFailed,
    ServiceUnavailable,
)
from app.notifications.service import (
    DedupStore,
    HandleOutcome,
    NotificationDispatcher,
    handle_order_created,
    order_created_message,
)
from app.broker.topology import Topology


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, tuple[str, int | None]] = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = (value, ex)
        return True

    def delete(self, key):
        return 1 if self.store.pop(key, None) else 0


class DownRedis:
    def set(self, *args, **kwargs):
        raise redis.ConnectionError("connection refused")


class RecordingChannel:
    def __init__(self, name: str, errors: list[Exception] | None = None) -> None:
        self.name = name
        self.errors = list(errors or [])
        self.attempts = 0
        self.sent: list[tuple[int, str]] = []

    def send(self, user_id: int, message: str) -> None:
        self.attempts += 1
        if self.errors:
            raise self.errors.pop(0)
        self.sent.append((user_id, message))


class Sleeps(list):
    def __call__(self, delay: float) -> None:
        self.append(delay)


@pytest.fixture
def email() -> RecordingChannel:
    return RecordingChannel("email")


@pytest.fixture
def sms() -> RecordingChannel:
    return RecordingChannel("sms")


@pytest.fixture
def sleeps() -> Sleeps:
    return Sleeps()


@pytest.fixture
def dispatcher(email, sms, sleeps) -> NotificationDispatcher:
    return NotificationDispatcher([email, sms], sleep=sleeps)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def dedup(fake_redis) -> DedupStore:
    return DedupStore(fake_redis, ttl_seconds=60)


# ── Message handling ─────────────────────────────────────────────────────────

def test_valid_event_notifies_by_email_and_sms(order_event, dispatcher, dedup, email, sms) -> None:
    event = order_event(order_id=9, user_id=42)

    outcome = handle_order_created(event.to_wire(), dispatcher, dedup)

    expected = f"Your order {event.order_number} has been created! Order ID: 9"
    assert outcome is HandleOutcome.PROCESSED
    assert email.sent == [(42, expected)]
    assert sms.sent == [(42, expected)]
    assert order_created_message(event) == expected


def test_redelivered_event_is_skipped(order_event, dispatcher, dedup, email, fake_redis) -> None:
    body = order_event(order_id=9).to_wire()

    assert handle_order_created(body, dispatcher, dedup) is HandleOutcome.PROCESSED
    assert handle_order_created(body, dispatcher, dedup) is HandleOutcome.DUPLICATE
    assert len(email.sent) == 1
    assert fake_redis.store["notify:order-created:9"] == ("1", 60)


@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b"{}",
        json.dumps({"orderId": 0, "userId": 1, "orderNumber": "x", "status": "CREATED",
                    "createdAt": "2026-10-19T00:00:00Z"}).encode(),
    ],
)
def test_invalid_payload_is_rejected(body, dispatcher, dedup, email) -> None:
    assert handle_order_created(body, dispatcher, dedup) is HandleOutcome.INVALID
    assert email.attempts == 0


def test_failed_dispatch_releases_dedup_marker(order_event, dedup, fake_redis, sleeps) -> None:
    broken = RecordingChannel("email", [InvalidRecipient("no such user")])
    dispatcher = NotificationDispatcher([broken], sleep=sleeps)
    body = order_event(order_id=4).to_wire()

    assert handle_order_created(body, dispatcher, dedup) is HandleOutcome.FAILED
    assert "notify:order-created:4" not in fake_redis.store


def test_unexpected_channel_error_releases_dedup_marker(order_event, dedup, fake_redis, sleeps) -> None:
    flaky = RecordingChannel("email", [RuntimeError("provider sdk crashed")])
    dispatcher = NotificationDispatcher([flaky], sleep=sleeps)
    body = order_event(order_id=5).to_wire()

    with pytest.raises(RuntimeError):
        handle_order_created(body, dispatcher, dedup)
    assert "notify:order-created:5" not in fake_redis.store

    # Replayed from the dead-letter queue
    assert handle_order_created(body, dispatcher, dedup) is HandleOutcome.PROCESSED
    assert len(flaky.sent) == 1


# ── Retry ────────────────────────────────────────────────────────────────────

def test_transient_errors_are_retried_with_backoff(sleeps) -> None:
    flaky = RecordingChannel("email", [NetworkTimeout("timeout"), ServiceUnavailable("503")])
    NotificationDispatcher([flaky], sleep=sleeps).dispatch(1, "hello")

    assert flaky.attempts == 3
    assert flaky.sent == [(1, "hello")]
    assert sleeps == [1.0, 2.0]


def test_invalid_recipient_is_not_retried(sleeps) -> None:
    channel = RecordingChannel("sms", [InvalidRecipient("bad number")])
    with pytest.raises(NotificationDispatchFailed) as info:
        NotificationDispatcher([channel], sleep=sleeps).dispatch(1, "hello")

    assert channel.attempts == 1
    assert sleeps == []
    assert info.value.failures["sms"].code == "INVALID_RECIPIENT"


def test_exhausted_retries_fail_but_other_channels_still_send(sleeps) -> None:
    down = RecordingChannel("email", [ServiceUnavailable("down")] * 3)
    sms = RecordingChannel("sms")

    with pytest.raises(NotificationDispatchFailed) as info:
        NotificationDispatcher([down, sms], sleep=sleeps).dispatch(1, "hello")

    assert down.attempts == 3
    assert sms.sent == [(1, "hello")]
    assert set(info.value.failures) == {"email"}


def test_simulated_channels_validate_recipient(caplog) -> None:
    with caplog.at_level("INFO"):
        EmailChannel().send(5, "hi")
        SmsChannel().send(5, "hi")
    assert "user 5" in caplog.text
    with pytest.raises(InvalidRecipient):
        EmailChannel().send(0, "hi")


# ── Consumer acknowledgements ────────────────────────────────────────────────

class FakeAmqpChannel:
    def __init__(self) -> None:
        self.acked: list[int] = []
        self.rejected: list[tuple[int, bool]] = []
        self.nacked: list[tuple[int, bool]] = []

    def basic_ack(self, delivery_tag):
        self.acked.append(delivery_tag)

    def basic_reject(self, delivery_tag, requeue):
        self.rejected.append((delivery_tag, requeue))

    def basic_nack(self, delivery_tag, requeue):
        self.nacked.append((delivery_tag, requeue))


class Method:
    def __init__(self, delivery_tag: int) -> None:
        self.delivery_tag = delivery_tag


def _consumer(dispatcher, dedup) -> OrderCreatedConsumer:
    return OrderCreatedConsumer(None, Topology(), dispatcher, dedup)


def test_consumer_acks_processed_and_duplicate(order_event, dispatcher, dedup) -> None:
    consumer = _consumer(dispatcher, dedup)
    channel = FakeAmqpChannel()
    body = order_event(order_id=1).to_wire()

    consumer.on_message(channel, Method(1), None, body)
    consumer.on_message(channel, Method(2), None, body)

    assert channel.acked == [1, 2]
    assert consumer.stats == {"processed": 1, "duplicate": 1}


def test_consumer_dead_letters_invalid_messages(dispatcher, dedup) -> None:
    consumer = _consumer(dispatcher, dedup)
    channel = FakeAmqpChannel()

    consumer.on_message(channel, Method(7), None, b"garbage")

    assert channel.rejected == [(7, False)]
    assert consumer.stats["invalid"] == 1


def test_consumer_requeues_when_redis_is_down(order_event, dispatcher) -> None:
    consumer = _consumer(dispatcher, DedupStore(DownRedis()))
    channel = FakeAmqpChannel()

    consumer.on_message(channel, Method(3), None, order_event().to_wire())

    assert channel.nacked == [(3, True)]
    assert channel.acked == []


def test_consumer_dead_letters_crashed_dispatch_and_allows_replay(
    order_event, dedup, fake_redis, sleeps
) -> None:
    flaky = RecordingChannel("sms", [RuntimeError("provider sdk crashed")])
    consumer = _consumer(NotificationDispatcher([flaky], sleep=sleeps), dedup)
    channel = FakeAmqpChannel()
    body = order_event(order_id=6).to_wire()

    consumer.on_message(channel, Method(1), None, body)
    consumer.on_message(channel, Method(2), None, body)

    assert channel.rejected == [(1, False)]
    assert channel.acked == [2]
    assert consumer.stats == {"failed": 1, "processed": 1}
    assert "notify:order-created:6" in fake_redis.store


# ── Consumer reconnects ──────────────────────────────────────────────────────

class FakeConsumeChannel:
    def __init__(self, outcome: BaseException) -> None:
        self.outcome = outcome
        self.consuming: list[str] = []
        self.stopped = False

    def exchange_declare(self, **kwargs) -> None:
        pass

    def queue_declare(self, **kwargs) -> None:
        pass

    def queue_bind(self, **kwargs) -> None:
        pass

    def basic_qos(self, prefetch_count) -> None:
        self.prefetch_count = prefetch_count

    def basic_consume(self, queue, on_message_callback, auto_ack) -> None:
        self.consuming.append(queue)

    def start_consuming(self) -> None:
        raise self.outcome

    def stop_consuming(self) -> None:
        self.stopped = True


class FakeConnection:
    def __init__(self, channel: FakeConsumeChannel) -> None:
        self._channel = channel
        self.is_open = True

    def channel(self) -> FakeConsumeChannel:
        return self._channel

    def close(self) -> None:
        self.is_open = False


class ScriptedConnections:
    """Connection factory that replays a script of connections or connect errors."""

    def __init__(self, script: list) -> None:
        self.script = list(script)
        self.opened: list[FakeConnection] = []

    def __call__(self, parameters) -> FakeConnection:
        step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step
        connection = FakeConnection(step)
        self.opened.append(connection)
        return connection


def _reconnecting_consumer(dispatcher, dedup, connections, sleeps, **kwargs) -> OrderCreatedConsumer:
    return OrderCreatedConsumer(
        None, Topology(), dispatcher, dedup,
        connection_factory=connections, sleep=sleeps, **kwargs,
    )


def test_consumer_retries_initial_connection_with_backoff(dispatcher, dedup, sleeps) -> None:
    channel = FakeConsumeChannel(KeyboardInterrupt())
    connections = ScriptedConnections([
        AMQPConnectionError("refused"),
        AMQPConnectionError("refused"),
        channel,
    ])

    _reconnecting_consumer(dispatcher, dedup, connections, sleeps).run()

    assert sleeps == [1.0, 2.0]
    assert channel.consuming == [Topology().queue]
    assert channel.stopped
    assert not connections.opened[0].is_open


def test_consumer_reconnects_after_losing_the_stream(dispatcher, dedup, sleeps) -> None:
    lost = FakeConsumeChannel(StreamLostError("connection reset"))
    resumed = FakeConsumeChannel(KeyboardInterrupt())
    connections = ScriptedConnections([AMQPConnectionError("refused"), lost, resumed])

    _reconnecting_consumer(dispatcher, dedup, connections, sleeps).run()

    # Consuming had started before the stream dropped, so the backoff starts over.
    assert sleeps == [1.0, 1.0]
    assert resumed.consuming == [Topology().queue]
    assert [c.is_open for c in connections.opened] == [False, False]


def test_consumer_gives_up_after_max_reconnects(dispatcher, dedup, sleeps) -> None:
    connections = ScriptedConnections([AMQPConnectionError("refused")] * 3)
    consumer = _reconnecting_consumer(dispatcher, dedup, connections, sleeps, max_reconnects=2)

    with pytest.raises(AMQPConnectionError):
        consumer.run()
    assert sleeps == [1.0, 2.0]
