"""Redis connection management.

The async client backs the per-user progress cache and, when configured,
the pub/sub delivery of completion events. Both degrade to pass-through
when Redis is unreachable, so a failed connection leaves no client behind
rather than a half-open one.
"""

import redis.asyncio as redis

from trailmark.config import Settings, get_settings
from trailmark.core.logging import get_logger


logger = get_logger(__name__)


def build_redis_client(settings: Settings) -> redis.Redis:
    """Create a pooled client from settings without connecting."""
    return redis.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_connect_timeout,
        retry_on_timeout=settings.redis_retry_on_timeout,
        health_check_interval=settings.redis_health_check_interval,
        decode_responses=True,
    )


class RedisConnection:
    """Process-wide Redis client holder, mirroring the Cassandra manager."""

    _client: redis.Redis | None = None

    @classmethod
    async def connect(cls, settings: Settings | None = None) -> redis.Redis:
        """Connect and verify with a ping.

        Raises:
            redis.ConnectionError: If the server cannot be reached
        """
        if cls._client is not None:
            return cls._client

        settings = settings or get_settings()
        client = build_redis_client(settings)
        try:
            await client.ping()
        except redis.ConnectionError as e:
            logger.warning("redis_connection_failed", error=str(e))
            await client.aclose()
            raise

        cls._client = client
        logger.info("redis_connected", url=settings.redis_url)
        return client

    @classmethod
    async def disconnect(cls) -> None:
        if cls._client is not None:
            await cls._client.aclose()
            cls._client = None
            logger.info("redis_disconnected")

    @classmethod
    def is_connected(cls) -> bool:
        return cls._client is not None


async def init_redis() -> redis.Redis:
    """Initialize the shared Redis client."""
    return await RedisConnection.connect()


async def shutdown_redis() -> None:
    """Close the shared Redis client."""
    await RedisConnection.disconnect()
