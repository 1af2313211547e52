"""Daily learning job.

Aggregates recommendation impressions, clicks and attributed purchases over a
trailing window, derives a confidence score per product and blacklists poor
performers. The serving path reads the resulting performance records on the
next request.

The job only ever recomputes from the event store and upserts, so re-running
it for the same day overwrites rather than accumulates.
"""

import asyncio
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from shared.constants import (
    BLACKLIST_CTR,
    BLACKLIST_CVR,
    BLACKLIST_MIN_IMPRESSIONS,
    EVENT_CLICK,
    EVENT_IMPRESSION,
    EVENT_RECOMMENDATION_SERVED,
    HIGH_PERFORMER_CVR,
    LEARNING_WINDOW_DAYS,
    MIN_IMPRESSIONS,
    SAMPLE_SIZE_SATURATION,
)
from uplift_service.services.collaborators import (
    JobLock,
    JobRunStore,
    PerformanceStore,
    SettingsStore,
    TrackingStore,
)
from uplift_service.services.entities import Attribution, TrackingEvent

logger = structlog.get_logger()

JOB_NAME = "daily_learning"


@dataclass
class ProductStats:
    impressions: int = 0
    clicks: int = 0
    purchases: int = 0
    revenue: float = 0.0


@dataclass(frozen=True)
class PerformanceRecord:
    """Derived metrics for one product, upserted by the learning job."""

    product_id: str
    impressions: int
    clicks: int
    purchases: int
    revenue: float
    ctr: float
    cvr: float
    confidence: float
    is_blacklisted: bool = False
    blacklist_reason: str | None = None
    is_high_performer: bool = False


@dataclass
class JobRun:
    """Health record for one learning job execution."""

    shop: str
    job_name: str = JOB_NAME
    status: str = "running"
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None
    duration_ms: int = 0
    records_processed: int = 0
    records_updated: int = 0
    error_count: int = 0
    error_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class LearningResult:
    shop: str
    success: bool
    status: str = "success"
    products_analyzed: int = 0
    blacklisted: int = 0
    boosted: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "shop": self.shop,
            "success": self.success,
            "status": self.status,
            "products_analyzed": self.products_analyzed,
            "blacklisted": self.blacklisted,
            "boosted": self.boosted,
            "error": self.error,
        }


def aggregate_product_stats(
    events: Iterable[TrackingEvent],
    attributions: Iterable[Attribution],
) -> dict[str, ProductStats]:
    """
    Count impressions, clicks, purchases and revenue per product.

    A recommendation-served event counts one impression for every product id
    listed in its metadata; other events count against their own product id.
    """
    stats: dict[str, ProductStats] = {}

    def bucket(product_id: str) -> ProductStats:
        return stats.setdefault(str(product_id), ProductStats())

    for event in events:
        if event.event == EVENT_RECOMMENDATION_SERVED:
            ids = event.metadata.get("recommendationIds") or event.metadata.get("recommendation_ids") or []
            if not isinstance(ids, list):
                logger.warning("Malformed recommendation metadata", metadata=event.metadata)
                continue
            for product_id in ids:
                bucket(product_id).impressions += 1
        elif event.product_id:
            if event.event == EVENT_IMPRESSION:
                bucket(event.product_id).impressions += 1
            elif event.event == EVENT_CLICK:
                bucket(event.product_id).clicks += 1

    for attribution in attributions:
        s = bucket(attribution.product_id)
        s.purchases += 1
        s.revenue += attribution.revenue or 0.0

    return stats


def compute_performance(product_id: str, stats: ProductStats) -> PerformanceRecord | None:
    """Derive a performance record, or ``None`` below the signal floor."""
    impressions = stats.impressions
    if impressions < MIN_IMPRESSIONS:
        return None

    ctr = stats.clicks / impressions
    cvr = stats.purchases / impressions
    sample_size_score = min(impressions / SAMPLE_SIZE_SATURATION, 1.0)
    confidence = 0.4 * cvr + 0.4 * ctr + 0.2 * sample_size_score

    reason = None
    if impressions >= BLACKLIST_MIN_IMPRESSIONS:
        if cvr < BLACKLIST_CVR:
            reason = "low_cvr"
        elif ctr < BLACKLIST_CTR:
            reason = "low_ctr"

    return PerformanceRecord(
        product_id=product_id,
        impressions=impressions,
        clicks=stats.clicks,
        purchases=stats.purchases,
        revenue=round(stats.revenue, 2),
        ctr=ctr,
        cvr=cvr,
        confidence=confidence,
        is_blacklisted=reason is not None,
        blacklist_reason=reason,
        is_high_performer=cvr > HIGH_PERFORMER_CVR,
    )


class InProcessJobLock:
    """Per-key asyncio lock for when no shared lock backend is reachable."""

    def __init__(self):
        self._held: set[str] = set()
        self._guard = asyncio.Lock()

    async def acquire(self, key: str, ttl_seconds: int) -> bool:
        async with self._guard:
            if key in self._held:
                return False
            self._held.add(key)
            return True

    async def release(self, key: str) -> None:
        async with self._guard:
            self._held.discard(key)


class LearningJob:
    """Runs the daily learning pass for one shop or every shop."""

    def __init__(
        self,
        tracking: TrackingStore,
        performance: PerformanceStore,
        settings_store: SettingsStore,
        job_runs: JobRunStore | None = None,
        lock: JobLock | None = None,
        window_days: int = LEARNING_WINDOW_DAYS,
        lock_ttl_seconds: int = 1800,
        clock=None,
    ):
        self.tracking = tracking
        self.performance = performance
        self.settings_store = settings_store
        self.job_runs = job_runs
        self.lock = lock or InProcessJobLock()
        self.window_days = window_days
        self.lock_ttl_seconds = lock_ttl_seconds
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def _record(self, run: JobRun) -> None:
        if self.job_runs is None:
            return
        try:
            await self.job_runs.record_job_run(run)
        except Exception as e:
            logger.warning("Failed to record job run", shop=run.shop, status=run.status, error=str(e))

    async def run(self, shop: str) -> LearningResult:
        """
        Run the learning pass for one shop.

        Never raises: failures are recorded on the job run and reported with
        ``success=False``. A run that finds another run for the same shop in
        progress is skipped.
        """
        lock_key = f"learning:{shop}"
        if not await self.lock.acquire(lock_key, self.lock_ttl_seconds):
            logger.info("Learning run already in progress, skipping", shop=shop)
            run = JobRun(shop=shop, status="skipped", completed_at=self.clock())
            await self._record(run)
            return LearningResult(shop=shop, success=False, status="skipped", error="already_running")

        run = JobRun(shop=shop, started_at=self.clock())
        started = time.perf_counter()
        logger.info("Starting daily learning", shop=shop, window_days=self.window_days)

        try:
            result = await self._learn(shop, run)
        except Exception as e:
            logger.error("Daily learning failed", shop=shop, error=str(e))
            run.status = "failed"
            run.error_count += 1
            run.error_message = str(e)
            result = LearningResult(shop=shop, success=False, status="failed", error=str(e))
        finally:
            await self.lock.release(lock_key)

        run.completed_at = self.clock()
        run.duration_ms = int((time.perf_counter() - started) * 1000)
        await self._record(run)
        return result

    async def _learn(self, shop: str, run: JobRun) -> LearningResult:
        since = self.clock() - timedelta(days=self.window_days)
        # Both reads share one database session, so they run in sequence
        events = await self.tracking.fetch_learning_events(shop, since)
        attributions = await self.tracking.fetch_attributions(shop, since)
        logger.info("Loaded learning inputs", shop=shop, events=len(events), attributions=len(attributions))

        stats = aggregate_product_stats(events, attributions)
        records = [
            record
            for product_id, product_stats in stats.items()
            if (record := compute_performance(product_id, product_stats)) is not None
        ]

        updated = 0
        for record in records:
            try:
                await self.performance.upsert_performance(shop, record.product_id, record)
                updated += 1
            except Exception as e:
                logger.warning(
                    "Failed to update product performance",
                    shop=shop,
                    product_id=record.product_id,
                    error=str(e),
                )
                run.error_count += 1
                if run.error_message is None:
                    run.error_message = str(e)

        blacklisted = sum(1 for r in records if r.is_blacklisted)
        boosted = sum(1 for r in records if r.is_high_performer)

        run.status = "partial" if run.error_count else "success"
        run.records_processed = len(records)
        run.records_updated = updated
        run.metadata = {
            "blacklisted": blacklisted,
            "boosted": boosted,
            "tracking_events": len(events),
            "attributions": len(attributions),
            "products_seen": len(stats),
        }

        logger.info(
            "Daily learning complete",
            shop=shop,
            products_analyzed=len(records),
            blacklisted=blacklisted,
            boosted=boosted,
            errors=run.error_count,
        )
        return LearningResult(
            shop=shop,
            success=True,
            status=run.status,
            products_analyzed=len(records),
            blacklisted=blacklisted,
            boosted=boosted,
        )

    async def run_for_all_shops(self) -> list[LearningResult]:
        """Run for every configured shop; one shop failing does not stop the rest."""
        shops = await self.settings_store.list_shops()
        logger.info("Running daily learning for all shops", shops=len(shops))

        results = []
        for shop in shops:
            results.append(await self.run(shop))

        logger.info(
            "Daily learning finished for all shops",
            succeeded=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success),
        )
        return results
