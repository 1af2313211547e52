"""Daily learning tasks.

Recomputes per-product performance from the trailing tracking window so the
serving path can boost strong products and drop blacklisted ones.
"""

import asyncio

import structlog
from celery import shared_task

from uplift_service.config import get_settings
from uplift_service.infrastructure.database.connection import get_db_session
from uplift_service.infrastructure.database.stores import (
    SqlJobRunStore,
    SqlPerformanceStore,
    SqlSettingsStore,
    SqlTrackingStore,
)
from uplift_service.infrastructure.redis import RedisJobLock, close_redis, get_redis_client
from uplift_service.services.learning import LearningJob, LearningResult

logger = structlog.get_logger()


async def _run(shop: str | None) -> list[LearningResult]:
    settings = get_settings()
    redis_client = await get_redis_client()
    try:
        async with get_db_session() as session:
            job = LearningJob(
                tracking=SqlTrackingStore(session),
                performance=SqlPerformanceStore(session),
                settings_store=SqlSettingsStore(session),
                job_runs=SqlJobRunStore(session),
                lock=RedisJobLock(redis_client),
                window_days=settings.learning_window_days,
                lock_ttl_seconds=settings.learning_lock_ttl_seconds,
            )
            if shop is None:
                return await job.run_for_all_shops()
            return [await job.run(shop)]
    finally:
        # asyncio.run closes the loop, so the client cannot be reused
        await close_redis()


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def run_daily_learning(self, shop: str) -> dict:
    """
    Run the learning pass for a single shop.

    Args:
        shop: Shop domain

    Returns:
        dict: Learning result summary
    """
    logger.info("Starting daily learning", shop=shop)
    try:
        results = asyncio.run(_run(shop))
    except Exception as e:
        logger.error("Daily learning task failed", shop=shop, error=str(e))
        raise self.retry(exc=e)
    return results[0].to_dict()


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def run_daily_learning_for_all_shops(self) -> dict:
    """
    Run the learning pass for every configured shop.

    Returns:
        dict: Per-shop results and totals
    """
    logger.info("Starting daily learning for all shops")
    try:
        results = asyncio.run(_run(None))
    except Exception as e:
        logger.error("Daily learning task failed", error=str(e))
        raise self.retry(exc=e)

    return {
        "shops": len(results),
        "succeeded": sum(1 for r in results if r.success),
        "failed": sum(1 for r in results if not r.success),
        "results": [r.to_dict() for r in results],
    }
