"""Redis-backed key-value store (``redis.asyncio``).

Multi-step list operations run inside MULTI/EXEC pipelines so that a capped
append or a drain is applied as a single unit on the server.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence

from redis import asyncio as aioredis
from redis.exceptions import RedisError, ResponseError, WatchError

from app.chat.errors import CacheUnavailableError

from .base import KeyValueStore

logger = logging.getLogger(__name__)


@contextmanager
def _redis_errors(operation: str, key: str) -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        logger.error("[Redis] %s failed for key %s: %s", operation, key, exc)
        raise CacheUnavailableError(f"Redis {operation} failed: {exc}") from exc


class RedisKeyValueStore(KeyValueStore):
    """Key-value backend talking to a Redis server.

    Args:
        client: A ``redis.asyncio.Redis`` client created with
                ``decode_responses=True``.
    """

    def __init__(self, client: "aioredis.Redis") -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyValueStore":
        return cls(aioredis.Redis.from_url(url, decode_responses=True))

    async def append_capped(self, key: str, values: Sequence[str], max_len: int) -> int:
        if not values:
            return 0
        with _redis_errors("append", key):
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.rpush(key, *values)
                pipe.ltrim(key, -max_len, -1)
                pipe.llen(key)
                _, _, length = await pipe.execute()
        return length

    async def fill_if_empty(self, key: str, values: Sequence[str], max_len: int) -> bool:
        if not values:
            return False
        with _redis_errors("fill", key):
            async with self._client.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    if await pipe.llen(key):
                        return False
                    pipe.multi()
                    pipe.rpush(key, *values)
                    pipe.ltrim(key, -max_len, -1)
                    await pipe.execute()
                except WatchError:
                    # Another writer touched the list between WATCH and EXEC.
                    logger.debug("[Redis] fill skipped, %s changed concurrently", key)
                    return False
        return True

    async def list_range(self, key: str) -> List[str]:
        with _redis_errors("range", key):
            return await self._client.lrange(key, 0, -1)

    async def list_set(self, key: str, index: int, value: str) -> None:
        with _redis_errors("set-index", key):
            try:
                await self._client.lset(key, index, value)
            except ResponseError as exc:
                # Trimmed away or key expired since the caller read it.
                logger.debug("[Redis] LSET %s[%d] ignored: %s", key, index, exc)

    async def list_push(self, key: str, value: str) -> int:
        with _redis_errors("push", key):
            return await self._client.rpush(key, value)

    async def drain(self, key: str) -> List[str]:
        with _redis_errors("drain", key):
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.lrange(key, 0, -1)
                pipe.delete(key)
                items, _ = await pipe.execute()
        return items

    async def get(self, key: str) -> Optional[str]:
        with _redis_errors("get", key):
            return await self._client.get(key)

    async def set(self, key: str, value: str) -> None:
        with _redis_errors("set", key):
            await self._client.set(key, value)

    async def delete(self, key: str) -> None:
        with _redis_errors("delete", key):
            await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()
