"""In-process TTL cache for served recommendation payloads.

Entries expire lazily on read; there is no background sweep. Values are
stored as orjson bytes so a hit returns a payload identical to the one that
was originally served.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

import orjson
import structlog

from shared.constants import RECOMMENDATION_CACHE_TTL_SECONDS

logger = structlog.get_logger()

Clock = Callable[[], float]


@dataclass
class _Entry:
    value: bytes
    expires_at: float


def recommendation_cache_key(
    shop: str,
    product_id: str | None,
    cart_ids: Iterable[str],
    limit: int,
    subtotal: int | None,
    threshold_active: bool,
    unit_id: str | None = None,
) -> str:
    """Cache key: shop, anchor/cart signature, limit and threshold inputs."""
    cart = ",".join(sorted(set(cart_ids)))
    return "|".join(
        [
            shop,
            product_id or "",
            cart,
            str(limit),
            str(subtotal if subtotal is not None else ""),
            "thr" if threshold_active else "",
            unit_id or "",
        ]
    )


class RecommendationCache:
    """
    Concurrency-safe key -> payload map with a TTL.

    ``get_or_compute`` guarantees at most one computation per key at a time:
    concurrent callers for the same key wait for the first one and then read
    its result.
    """

    def __init__(
        self,
        ttl_seconds: float = RECOMMENDATION_CACHE_TTL_SECONDS,
        clock: Clock | None = None,
        max_entries: int = 10_000,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock or time.monotonic
        self.max_entries = max_entries
        self._entries: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()
        self._key_locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self.clock():
                del self._entries[key]
                logger.debug("Cache entry expired", key=key)
                return None
            data = entry.value
        return orjson.loads(data)

    async def set(self, key: str, value: Any) -> None:
        data = orjson.dumps(value)
        async with self._lock:
            if len(self._entries) >= self.max_entries and key not in self._entries:
                self._evict_expired()
                if len(self._entries) >= self.max_entries:
                    # Oldest insertion goes first
                    self._entries.pop(next(iter(self._entries)))
            self._entries[key] = _Entry(value=data, expires_at=self.clock() + self.ttl_seconds)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def _evict_expired(self) -> None:
        now = self.clock()
        for key in [k for k, e in self._entries.items() if e.expires_at <= now]:
            del self._entries[key]

    async def _key_lock(self, key: str) -> asyncio.Lock:
        async with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = asyncio.Lock()
            return lock

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        should_cache: Callable[[Any], bool] | None = None,
    ) -> tuple[Any, bool]:
        """
        Return ``(value, hit)``, computing and storing the value on a miss.

        Args:
            key: Cache key
            compute: Coroutine factory producing a JSON-serializable value
            should_cache: Optional predicate; values it rejects are returned
                but not stored
        """
        cached = await self.get(key)
        if cached is not None:
            logger.debug("Cache hit", key=key)
            return cached, True

        lock = await self._key_lock(key)
        async with lock:
            cached = await self.get(key)
            if cached is not None:
                logger.debug("Cache hit after wait", key=key)
                return cached, True

            logger.debug("Cache miss", key=key)
            value = await compute()
            if should_cache is None or should_cache(value):
                await self.set(key, value)
                # Return the stored form so hits and misses are indistinguishable
                value = orjson.loads(orjson.dumps(value))

        async with self._lock:
            if not lock.locked() and self._key_locks.get(key) is lock:
                del self._key_locks[key]

        return value, False
