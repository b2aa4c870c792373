# planner_core/db/redis.py
import redis
from planner_core.core.config import settings


def get_redis_client(url: str = None) -> redis.Redis:
    """
    Creates a new Redis client for the broker.

    Socket timeouts bound every broker call, so a hung publish fails with a
    redis TimeoutError instead of blocking the caller.
    """
    return redis.from_url(
        url or settings.broker_url,
        decode_responses=True,
        socket_timeout=settings.BROKER_PUBLISH_TIMEOUT_SECONDS,
        socket_connect_timeout=settings.BROKER_PUBLISH_TIMEOUT_SECONDS,
        health_check_interval=30,
    )
