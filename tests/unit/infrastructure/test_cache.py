"""Unit tests for the in-process recommendation cache."""

import asyncio

import pytest

from conftest import FakeClock
from uplift_service.infrastructure.cache import RecommendationCache, recommendation_cache_key


class TestCacheKey:
    def test_cart_order_does_not_matter(self) -> None:
        a = recommendation_cache_key("s", None, ["2", "1"], 6, 1000, False)
        b = recommendation_cache_key("s", None, ["1", "2", "2"], 6, 1000, False)
        assert a == b

    def test_inputs_that_change_output_change_key(self) -> None:
        base = recommendation_cache_key("s", "1", [], 6, None, False)
        assert base != recommendation_cache_key("s", "1", [], 4, None, False)
        assert base != recommendation_cache_key("s", "1", [], 6, 500, False)
        assert base != recommendation_cache_key("s", "1", [], 6, None, True)
        assert base != recommendation_cache_key("other", "1", [], 6, None, False)
        assert base != recommendation_cache_key("s", "1", [], 6, None, False, unit_id="session-1")


class TestRecommendationCache:
    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock()

    @pytest.fixture
    def cache(self, clock: FakeClock) -> RecommendationCache:
        return RecommendationCache(ttl_seconds=60, clock=clock)

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, cache: RecommendationCache) -> None:
        assert await cache.get("any-key") is None

    @pytest.mark.asyncio
    async def test_set_then_get(self, cache: RecommendationCache) -> None:
        await cache.set("key", {"recommendations": [{"id": "1"}]})
        assert await cache.get("key") == {"recommendations": [{"id": "1"}]}

    @pytest.mark.asyncio
    async def test_expires_after_ttl(self, cache: RecommendationCache, clock: FakeClock) -> None:
        await cache.set("key", {"v": 1})

        clock.advance(59)
        assert await cache.get("key") == {"v": 1}

        clock.advance(1)
        assert await cache.get("key") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, cache: RecommendationCache) -> None:
        await cache.set("a", 1)
        await cache.set("b", 2)

        await cache.delete("a")
        assert await cache.get("a") is None

        await cache.clear()
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_oldest_entry_evicted_when_full(self, clock: FakeClock) -> None:
        cache = RecommendationCache(ttl_seconds=60, clock=clock, max_entries=2)
        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.set("c", 3)

        assert await cache.get("a") is None
        assert await cache.get("c") == 3

    @pytest.mark.asyncio
    async def test_get_or_compute_hit_and_miss(self, cache: RecommendationCache) -> None:
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            return {"recommendations": [], "n": calls}

        first, first_hit = await cache.get_or_compute("key", compute)
        second, second_hit = await cache.get_or_compute("key", compute)

        assert (first_hit, second_hit) == (False, True)
        assert first == second
        assert calls == 1

    @pytest.mark.asyncio
    async def test_rejected_values_not_stored(self, cache: RecommendationCache) -> None:
        async def compute():
            return {"reason": "primary_system_failure"}

        await cache.get_or_compute("key", compute, should_cache=lambda v: "reason" not in v)
        assert await cache.get("key") is None

    @pytest.mark.asyncio
    async def test_concurrent_callers_compute_once(self, cache: RecommendationCache) -> None:
        calls = 0
        release = asyncio.Event()

        async def compute():
            nonlocal calls
            calls += 1
            await release.wait()
            return {"value": 42}

        tasks = [asyncio.create_task(cache.get_or_compute("key", compute)) for _ in range(5)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*tasks)

        assert calls == 1
        assert all(value == {"value": 42} for value, _ in results)
        assert sum(1 for _, hit in results if not hit) == 1
