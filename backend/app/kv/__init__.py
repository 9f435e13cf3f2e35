"""Key-value backends for the chat cache, offline queues and presence keys."""
import logging

from app.config import AppSettings

from .base import InMemoryKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)


def create_kv_store(config: AppSettings) -> KeyValueStore:
    """Build the backend selected by ``cache.backend``.

    Falls back to the in-process store when Redis is selected but no URL is
    configured in the secrets file.
    """
    if config.cache.backend == "redis":
        url = config.secrets.redis.url
        if url:
            from .redis_store import RedisKeyValueStore

            logger.info("Using Redis key-value backend")
            return RedisKeyValueStore.from_url(url)
        logger.warning("cache.backend is 'redis' but secrets.redis.url is empty; using memory")
    logger.info("Using in-process key-value backend")
    return InMemoryKeyValueStore()


__all__ = [
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "create_kv_store",
]
