"""Read-through cache for per-user progress aggregates.

Entries are pydantic models stored as JSON under
``{prefix}:user:{user_id}:{name}``. A per-user index set records every
entry key so a write can drop all of them in one call. Redis is optional:
when absent or failing, reads fall through to the loader.
"""

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar
from uuid import UUID

import structlog
from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError


if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class ProgressCache:
    """Per-user memoisation of derived progress views."""

    def __init__(
        self,
        redis: "Redis | None",
        ttl_seconds: int = 300,
        key_prefix: str = "progress",
    ) -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def _key(self, user_id: UUID, name: str) -> str:
        return f"{self.key_prefix}:user:{user_id}:{name}"

    def _index_key(self, user_id: UUID) -> str:
        return f"{self.key_prefix}:user:{user_id}:keys"

    async def get_or_load(
        self,
        user_id: UUID,
        name: str,
        loader: Callable[[], Awaitable[ModelT]],
        model: type[ModelT],
    ) -> ModelT:
        """Return the cached view, computing and storing it on a miss.

        Args:
            user_id: Owner of the cached view
            name: View name, unique per user
            loader: Computes the view from storage
            model: Pydantic model used to decode the cached JSON
        """
        if self.redis is None:
            return await loader()

        key = self._key(user_id, name)
        try:
            cached = await self.redis.get(key)
        except RedisError as e:
            logger.warning("progress_cache_error", operation="get", key=key, error=str(e))
            cached = None

        if cached is not None:
            try:
                return model.model_validate_json(cached)
            except ValidationError:
                logger.warning("progress_cache_corrupt", key=key)

        value = await loader()

        try:
            pipe = self.redis.pipeline()
            pipe.set(key, value.model_dump_json(), ex=self.ttl_seconds)
            pipe.sadd(self._index_key(user_id), key)
            pipe.expire(self._index_key(user_id), self.ttl_seconds)
            await pipe.execute()
        except RedisError as e:
            logger.warning("progress_cache_error", operation="set", key=key, error=str(e))

        return value

    async def invalidate(self, user_id: UUID) -> None:
        """Drop every cached view of a user."""
        if self.redis is None:
            return

        index_key = self._index_key(user_id)
        try:
            keys = await self.redis.smembers(index_key)
            await self.redis.delete(index_key, *keys)
        except RedisError as e:
            logger.warning(
                "progress_cache_error",
                operation="invalidate",
                user_id=str(user_id),
                error=str(e),
            )
