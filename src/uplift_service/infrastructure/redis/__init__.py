"""Redis infrastructure with graceful degradation.

Redis backs the learning job's per-shop run lock. When it is unreachable the
lock falls back to an in-process lock, which still prevents overlapping runs
inside a single worker.
"""

import redis.asyncio as aioredis
import structlog

from uplift_service.config import get_settings
from uplift_service.services.learning import InProcessJobLock

logger = structlog.get_logger()

_redis_client: aioredis.Redis | None = None

LOCK_PREFIX = "uplift:lock:"


async def get_redis_client() -> aioredis.Redis | None:
    """Get or create the global async Redis client."""
    global _redis_client
    if _redis_client is None:
        settings = get_settings()
        try:
            _redis_client = aioredis.from_url(
                settings.redis_url,
                decode_responses=False,
                socket_connect_timeout=2,
                socket_timeout=2,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.warning("Redis unavailable, using in-process locks", error=str(e))
            _redis_client = None
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


async def redis_health_check(client: aioredis.Redis | None) -> bool:
    if not client:
        return False
    try:
        return bool(await client.ping())
    except Exception:
        return False


class RedisJobLock:
    """``SET NX EX`` lock per key. Falls back to an in-process lock if Redis errors."""

    def __init__(self, client: aioredis.Redis | None, fallback: InProcessJobLock | None = None):
        self.client = client
        self.fallback = fallback or InProcessJobLock()
        # Keys acquired through the fallback must be released there too
        self._local_keys: set[str] = set()

    async def acquire(self, key: str, ttl_seconds: int) -> bool:
        if self.client:
            try:
                acquired = await self.client.set(LOCK_PREFIX + key, b"1", nx=True, ex=ttl_seconds)
                return bool(acquired)
            except Exception as e:
                logger.warning("Lock acquire failed, using in-process lock", key=key, error=str(e))

        acquired = await self.fallback.acquire(key, ttl_seconds)
        if acquired:
            self._local_keys.add(key)
        return acquired

    async def release(self, key: str) -> None:
        if key in self._local_keys:
            self._local_keys.discard(key)
            await self.fallback.release(key)
            return
        if not self.client:
            return
        try:
            await self.client.delete(LOCK_PREFIX + key)
        except Exception as e:
            logger.warning("Lock release failed", key=key, error=str(e))
