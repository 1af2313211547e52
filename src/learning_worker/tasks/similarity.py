"""Weekly similarity computation tasks.

Rebuilds each shop's co-purchase similarities from recent orders; the content
signal on the serving path reads them back.
"""

import asyncio

import structlog
from celery import shared_task

from uplift_service.config import get_settings
from uplift_service.infrastructure.commerce import CommerceApiClient
from uplift_service.infrastructure.database.connection import get_db_session
from uplift_service.infrastructure.database.stores import (
    SqlJobRunStore,
    SqlSettingsStore,
    SqlSimilarityStore,
)
from uplift_service.infrastructure.redis import RedisJobLock, close_redis, get_redis_client
from uplift_service.services.similarity import SimilarityJob, SimilarityResult

logger = structlog.get_logger()


async def _run(shop: str | None) -> list[SimilarityResult]:
    settings = get_settings()
    redis_client = await get_redis_client()
    # Bound to this task's event loop
    commerce = CommerceApiClient(
        base_url=settings.commerce_api_base_url,
        token=settings.commerce_api_token,
        timeout=settings.commerce_api_timeout,
    )
    try:
        async with get_db_session() as session:
            job = SimilarityJob(
                orders=commerce,
                store=SqlSimilarityStore(session),
                settings_store=SqlSettingsStore(session),
                job_runs=SqlJobRunStore(session),
                lock=RedisJobLock(redis_client),
                lookback_days=settings.similarity_lookback_days,
                max_orders=settings.similarity_max_orders,
                lock_ttl_seconds=settings.learning_lock_ttl_seconds,
            )
            if shop is None:
                return await job.run_for_all_shops()
            return [await job.run(shop)]
    finally:
        await commerce.close()
        await close_redis()


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def run_similarity_computation(self, shop: str) -> dict:
    """
    Recompute co-purchase similarities for a single shop.

    Args:
        shop: Shop domain

    Returns:
        dict: Similarity result summary
    """
    logger.info("Starting similarity computation", shop=shop)
    try:
        results = asyncio.run(_run(shop))
    except Exception as e:
        logger.error("Similarity computation task failed", shop=shop, error=str(e))
        raise self.retry(exc=e)
    return results[0].to_dict()


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def run_similarity_computation_for_all_shops(self) -> dict:
    logger.info("Starting similarity computation for all shops")
    try:
        results = asyncio.run(_run(None))
    except Exception as e:
        logger.error("Similarity computation task failed", error=str(e))
        raise self.retry(exc=e)

    return {
        "shops": len(results),
        "succeeded": sum(1 for r in results if r.success),
        "failed": sum(1 for r in results if not r.success),
        "similarities_created": sum(r.similarities_created for r in results),
        "results": [r.to_dict() for r in results],
    }
