"""
Key-value store used for short-lived gateway state.

Only two kinds of entries live here: the cached access token and the
checkout link of a freshly created invoice. Both expire on their own.
"""
from typing import Optional, Protocol

import redis.asyncio as aioredis
import structlog

from storefront_payments.config import get_settings

logger = structlog.get_logger(__name__)


class KeyValueStore(Protocol):
    """Minimal async KV contract: string values with optional expiry."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def put(self, key: str, value: str, expiration_ttl: Optional[int] = None) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


class RedisKeyValueStore:
    """``KeyValueStore`` backed by Redis; TTLs map onto ``SET ... EX``."""

    def __init__(self, redis_client: Optional[aioredis.Redis] = None, redis_url: Optional[str] = None):
        """
        Initialize the store.

        Args:
            redis_client: Optional Redis client (created lazily from the URL if not provided)
            redis_url: Optional Redis URL (uses config if not provided)
        """
        self.redis_url = redis_url or get_settings().redis_url
        self.redis_client = redis_client
        self._redis_initialized = redis_client is not None

    async def _ensure_redis(self) -> aioredis.Redis:
        """Ensure Redis client is initialized."""
        if self.redis_client is None or not self._redis_initialized:
            self.redis_client = aioredis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            self._redis_initialized = True
        return self.redis_client

    async def get(self, key: str) -> Optional[str]:
        redis = await self._ensure_redis()
        return await redis.get(key)

    async def put(self, key: str, value: str, expiration_ttl: Optional[int] = None) -> None:
        if expiration_ttl is not None and expiration_ttl <= 0:
            raise ValueError("expiration_ttl must be positive")
        redis = await self._ensure_redis()
        await redis.set(key, value, ex=expiration_ttl)
        logger.debug("kv_put", key=key, expiration_ttl=expiration_ttl)

    async def delete(self, key: str) -> None:
        redis = await self._ensure_redis()
        await redis.delete(key)

    async def ping(self) -> bool:
        redis = await self._ensure_redis()
        return bool(await redis.ping())

    async def close(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
            self._redis_initialized = False
