import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.orders.exceptions import EventPublishingFailed, NoActiveTransaction
from app.outbox.unit_of_work import UnitOfWork


@pytest.fixture
def failures() -> list:
    return []


@pytest.fixture
def uow(session_factory, publisher, failures) -> UnitOfWork:
    return UnitOfWork(session_factory, publisher, on_publish_failure=failures.append)


def test_stage_outside_transaction_fails_fast(uow, order_event) -> None:
    with pytest.raises(NoActiveTransaction):
        uow.stage(order_event())


@pytest.mark.asyncio
async def test_stage_after_commit_fails_fast(uow, order_event) -> None:
    async with uow:
        await uow.commit()
        with pytest.raises(NoActiveTransaction):
            uow.stage(order_event())


@pytest.mark.asyncio
async def test_events_publish_only_after_commit_and_exit(uow, broker, order_event) -> None:
    async with uow:
        uow.stage(order_event(order_id=1))
        uow.stage(order_event(order_id=2))
        await uow.commit()
        assert broker.published == []

    assert [e["orderId"] for e in broker.events()] == [1, 2]


@pytest.mark.asyncio
async def test_exiting_without_commit_discards_events(uow, broker, order_event) -> None:
    async with uow:
        uow.stage(order_event())
    assert broker.calls == 0


@pytest.mark.asyncio
async def test_exception_discards_staged_events(uow, broker, order_event) -> None:
    with pytest.raises(RuntimeError):
        async with uow:
            uow.stage(order_event())
            raise RuntimeError("boom")
    assert broker.calls == 0


@pytest.mark.asyncio
async def test_explicit_rollback_discards_events(uow, broker, order_event) -> None:
    async with uow:
        uow.stage(order_event())
        await uow.rollback()
        assert uow.staged == ()
    assert broker.calls == 0


@pytest.mark.asyncio
async def test_duplicate_staging_rejected(uow, order_event) -> None:
    event = order_event(order_id=5)
    async with uow:
        uow.stage(event)
        with pytest.raises(ValueError):
            uow.stage(event)


@pytest.mark.asyncio
async def test_publish_failure_is_reported_not_raised(uow, broker, failures, order_event) -> None:
    broker.always_fail = True
    event = order_event()

    async with uow:
        uow.stage(event)
        await uow.commit()

    assert len(failures) == 1
    assert isinstance(failures[0], EventPublishingFailed)
    assert failures[0].order_number == event.order_number


@pytest.mark.asyncio
async def test_unexpected_publisher_error_is_reported(session_factory, failures, order_event) -> None:
    class _BrokenPublisher:
        destination = "order.exchange/order.created"

        async def publish(self, event) -> None:
            raise ConnectionResetError("socket closed")

    uow = UnitOfWork(session_factory, _BrokenPublisher(), on_publish_failure=failures.append)
    async with uow:
        uow.stage(order_event())
        await uow.commit()

    assert len(failures) == 1
    assert isinstance(failures[0].cause, ConnectionResetError)


@pytest.mark.asyncio
async def test_interrupted_commit_reports_staged_events(
    uow, broker, failures, order_event, monkeypatch
) -> None:
    async def hanging_commit(self) -> None:
        await asyncio.sleep(10)

    monkeypatch.setattr(AsyncSession, "commit", hanging_commit)
    event = order_event()

    async def run() -> None:
        async with uow:
            uow.stage(event)
            await uow.commit()

    task = asyncio.create_task(run())
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert broker.calls == 0
    assert len(failures) == 1
    assert failures[0].order_number == event.order_number
    assert failures[0].attempts == 0
