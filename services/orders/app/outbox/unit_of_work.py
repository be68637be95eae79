"""
Unit of work — one database transaction plus the events it will publish.

Events staged during the transaction are held in memory. ``commit()`` commits
and releases the session; the committed events are then handed to the
publisher when the ``async with`` block exits, by ordinary control flow and
outside any database transaction. A rollback, or leaving the block without
committing, discards them.

    async with UnitOfWork(session_factory, publisher) as uow:
        order = await repository.insert(uow.session, order)
        uow.stage(OrderCreatedEvent(...))
        await uow.commit()
    # events published here
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.events.schemas import OrderCreatedEvent

from app.orders.exceptions import EventPublishingFailed, NoActiveTransaction
from app.outbox.publisher import OutboxPublisher, log_publish_failure

logger = logging.getLogger(__name__)

FailureReporter = Callable[[EventPublishingFailed], None]


class UnitOfWork:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: OutboxPublisher,
        *,
        on_publish_failure: FailureReporter = log_publish_failure,
    ) -> None:
        self._session_factory = session_factory
        self._publisher = publisher
        self._on_publish_failure = on_publish_failure
        self._session: AsyncSession | None = None
        self._staged: list[OrderCreatedEvent] = []
        self._committed: list[OrderCreatedEvent] = []

    async def __aenter__(self) -> "UnitOfWork":
        self._session = self._session_factory()
        self._staged = []
        self._committed = []
        await self._session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if self._session is not None and self._session.in_transaction():
                await self.rollback()
        finally:
            await self._release()
        # Committed data stands even if the block raised afterwards.
        await self.publish_committed()

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise NoActiveTransaction("Unit of work has no open session")
        return self._session

    @property
    def staged(self) -> tuple[OrderCreatedEvent, ...]:
        return tuple(self._staged)

    def stage(self, event: OrderCreatedEvent) -> None:
        """Register ``event`` for publication after the transaction commits."""
        if self._session is None or not self._session.in_transaction():
            raise NoActiveTransaction(
                f"Cannot stage {event.event_type} for order {event.order_number}: "
                "no transaction is active"
            )
        if any(staged.order_id == event.order_id for staged in self._staged):
            raise ValueError(f"Event for order {event.order_number} is already staged")
        self._staged.append(event)

    async def commit(self) -> None:
        """Commit and release the session. Staged events become publishable."""
        session = self.session
        try:
            await session.commit()
        except asyncio.CancelledError as exc:
            # The commit may have landed; nothing will publish these events.
            self._report_unconfirmed(exc)
            raise
        self._committed.extend(self._staged)
        self._staged = []
        await self._release()

    async def rollback(self) -> None:
        if self._staged:
            logger.debug("Discarding %d staged event(s) on rollback", len(self._staged))
        self._staged = []
        if self._session is not None:
            await self._session.rollback()

    async def publish_committed(self) -> None:
        """Publish committed events. Failures go to ``on_publish_failure``, never up."""
        events, self._committed = self._committed, []
        for event in events:
            try:
                await self._publisher.publish(event)
            except EventPublishingFailed as exc:
                self._on_publish_failure(exc)
            except Exception as exc:
                logger.exception("Unexpected error publishing order %s", event.order_number)
                self._on_publish_failure(
                    EventPublishingFailed(
                        event.event_type, self._publisher.destination, event.order_number, 1, exc
                    )
                )

    def _report_unconfirmed(self, cause: BaseException) -> None:
        events, self._staged = self._staged, []
        for event in events:
            logger.error(
                "Commit for order %s was interrupted; its %s event was not published",
                event.order_number, event.event_type,
            )
            self._on_publish_failure(
                EventPublishingFailed(
                    event.event_type, self._publisher.destination, event.order_number, 0, cause
                )
            )

    async def _release(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
