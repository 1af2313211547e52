"""FastAPI dependencies that wire the engine to its adapters."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from uplift_service.config import Settings, get_settings
from uplift_service.infrastructure.cache import RecommendationCache
from uplift_service.infrastructure.commerce import get_commerce_client
from uplift_service.infrastructure.database.connection import get_session
from uplift_service.infrastructure.database.signals import SimilaritySignalProvider
from uplift_service.infrastructure.database.stores import (
    SqlBundleStore,
    SqlExperimentStore,
    SqlJobRunStore,
    SqlPerformanceStore,
    SqlSettingsStore,
    SqlSimilarityStore,
    SqlSubscriptionStore,
    SqlTrackingStore,
)
from uplift_service.infrastructure.redis import RedisJobLock, get_redis_client
from uplift_service.services.learning import LearningJob
from uplift_service.services.recommendation_engine import RecommendationEngine
from uplift_service.services.similarity import SimilarityJob

# Process-wide; entries are keyed per shop and request shape
_cache: RecommendationCache | None = None


def get_recommendation_cache(settings: Settings = Depends(get_settings)) -> RecommendationCache:
    global _cache
    if _cache is None:
        _cache = RecommendationCache(ttl_seconds=settings.recommendation_cache_ttl_seconds)
    return _cache


async def get_engine(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
    cache: RecommendationCache = Depends(get_recommendation_cache),
) -> RecommendationEngine:
    commerce = get_commerce_client()
    tracking = SqlTrackingStore(session)
    return RecommendationEngine(
        catalog=commerce,
        orders=commerce,
        settings_store=SqlSettingsStore(session),
        tracking=tracking,
        tracking_sink=tracking,
        performance=SqlPerformanceStore(session),
        subscriptions=SqlSubscriptionStore(session),
        signals=SimilaritySignalProvider(session),
        experiments=SqlExperimentStore(session),
        bundle_store=SqlBundleStore(session),
        cache=cache,
        config=settings,
    )


async def get_learning_job(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> LearningJob:
    redis_client = await get_redis_client()
    return LearningJob(
        tracking=SqlTrackingStore(session),
        performance=SqlPerformanceStore(session),
        settings_store=SqlSettingsStore(session),
        job_runs=SqlJobRunStore(session),
        lock=RedisJobLock(redis_client),
        window_days=settings.learning_window_days,
        lock_ttl_seconds=settings.learning_lock_ttl_seconds,
    )


async def get_similarity_job(
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> SimilarityJob:
    redis_client = await get_redis_client()
    return SimilarityJob(
        orders=get_commerce_client(),
        store=SqlSimilarityStore(session),
        settings_store=SqlSettingsStore(session),
        job_runs=SqlJobRunStore(session),
        lock=RedisJobLock(redis_client),
        lookback_days=settings.similarity_lookback_days,
        max_orders=settings.similarity_max_orders,
        lock_ttl_seconds=settings.learning_lock_ttl_seconds,
    )
