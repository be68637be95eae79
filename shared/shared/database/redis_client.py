from typing import Any

import redis


def get_redis_client(redis_url: str, **kwargs: Any) -> redis.Redis:
    """Blocking client: the notification consumer runs on pika's blocking loop."""
    return redis.Redis.from_url(redis_url, decode_responses=True, **kwargs)
