from shared.database.postgres import (
    AsyncSessionFactory,
    Base,
    get_async_session_factory,
)
from shared.database.redis_client import get_redis_client

__all__ = [
    "Base",
    "get_async_session_factory",
    "AsyncSessionFactory",
    "get_redis_client",
]
