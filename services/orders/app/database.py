from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from shared.database.postgres import AsyncSessionFactory, get_async_session_factory

# Import models so Base.metadata is populated for Alembic and create_all().
import app.orders.models  # noqa: F401

_session_factory: AsyncSessionFactory | None = None


def init_db(database_url: str) -> AsyncSessionFactory:
    global _session_factory
    _session_factory = get_async_session_factory(database_url, expire_on_commit=False)
    return _session_factory


def set_session_factory(factory: AsyncSessionFactory | None) -> None:
    """Install an externally built factory (tests, one-off scripts)."""
    global _session_factory
    _session_factory = factory


def get_session_factory() -> AsyncSessionFactory:
    if _session_factory is None:
        raise RuntimeError("Database not initialized")
    return _session_factory


async def dispose_db() -> None:
    global _session_factory
    if _session_factory is not None:
        await _session_factory.kw["bind"].dispose()
        _session_factory = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Read-only request session. Order creation manages its own unit of work."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
        finally:
            await session.rollback()
