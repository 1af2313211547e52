"""Weekly co-purchase similarity computation.

Builds an order/product incidence matrix from recent order history and scores
every co-purchased pair by a blend of Jaccard overlap (orders containing both
over orders containing either) and co-purchase frequency (orders containing
both over the larger product's order count). The top pairs per product
replace the shop's stored similarities, which back the content signal on the
serving path.
"""

import time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import numpy as np
import structlog

from shared.constants import (
    SIMILARITY_FREQUENCY_WEIGHT,
    SIMILARITY_JACCARD_WEIGHT,
    SIMILARITY_LOOKBACK_DAYS,
    SIMILARITY_MAX_ORDERS,
    SIMILARITY_MIN_CO_PURCHASES,
    SIMILARITY_MIN_SCORE,
    SIMILARITY_TOP_N,
)
from uplift_service.services.collaborators import (
    JobLock,
    JobRunStore,
    OrderHistoryService,
    SettingsStore,
    SimilarityStore,
)
from uplift_service.services.entities import Order
from uplift_service.services.learning import InProcessJobLock, JobRun

logger = structlog.get_logger()

JOB_NAME = "similarity_computation"


@dataclass(frozen=True)
class SimilarityRecord:
    """One directed ``product -> similar product`` pair."""

    product_id: str
    similar_product_id: str
    co_purchase_count: int
    jaccard: float
    frequency: float
    score: float


@dataclass
class SimilarityResult:
    shop: str
    success: bool
    status: str = "success"
    orders_analyzed: int = 0
    similarities_created: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "shop": self.shop,
            "success": self.success,
            "status": self.status,
            "orders_analyzed": self.orders_analyzed,
            "similarities_created": self.similarities_created,
            "error": self.error,
        }


def compute_similarities(
    orders: Iterable[Order],
    min_co_purchases: int = SIMILARITY_MIN_CO_PURCHASES,
    min_score: float = SIMILARITY_MIN_SCORE,
    top_n: int = SIMILARITY_TOP_N,
) -> list[SimilarityRecord]:
    """
    Score co-purchased product pairs.

    Pairs bought together fewer than ``min_co_purchases`` times, or scoring
    at or below ``min_score``, are dropped. Both directions of a kept pair
    are returned; each product keeps at most ``top_n`` partners, best first.
    """
    baskets = [order.distinct_product_ids for order in orders]
    baskets = [b for b in baskets if b]
    if not baskets:
        return []

    # A product seen in fewer orders than the co-purchase floor cannot pair
    order_counts: dict[str, int] = {}
    for basket in baskets:
        for pid in basket:
            order_counts[pid] = order_counts.get(pid, 0) + 1
    products = sorted(pid for pid, n in order_counts.items() if n >= min_co_purchases)
    if len(products) < 2:
        return []
    index = {pid: i for i, pid in enumerate(products)}

    incidence = np.zeros((len(baskets), len(products)), dtype=np.float64)
    for row, basket in enumerate(baskets):
        cols = [index[pid] for pid in basket if pid in index]
        incidence[row, cols] = 1.0

    co = incidence.T @ incidence
    totals = np.diag(co).copy()
    union = totals[:, None] + totals[None, :] - co
    larger = np.maximum.outer(totals, totals)
    with np.errstate(divide="ignore", invalid="ignore"):
        jaccard = np.where(union > 0, co / union, 0.0)
        frequency = np.where(larger > 0, co / larger, 0.0)
    scores = SIMILARITY_JACCARD_WEIGHT * jaccard + SIMILARITY_FREQUENCY_WEIGHT * frequency

    np.fill_diagonal(co, 0)
    keep = (co >= min_co_purchases) & (scores > min_score)

    records = []
    for i, pid in enumerate(products):
        partners = np.flatnonzero(keep[i])
        if partners.size == 0:
            continue
        ranked = partners[np.argsort(-scores[i, partners], kind="stable")][:top_n]
        for j in ranked:
            records.append(
                SimilarityRecord(
                    product_id=pid,
                    similar_product_id=products[j],
                    co_purchase_count=int(co[i, j]),
                    jaccard=float(jaccard[i, j]),
                    frequency=float(frequency[i, j]),
                    score=float(scores[i, j]),
                )
            )
    return records


class SimilarityJob:
    """Recomputes stored co-purchase similarities for one shop or every shop."""

    def __init__(
        self,
        orders: OrderHistoryService,
        store: SimilarityStore,
        settings_store: SettingsStore,
        job_runs: JobRunStore | None = None,
        lock: JobLock | None = None,
        lookback_days: int = SIMILARITY_LOOKBACK_DAYS,
        max_orders: int = SIMILARITY_MAX_ORDERS,
        lock_ttl_seconds: int = 1800,
        clock=None,
    ):
        self.orders = orders
        self.store = store
        self.settings_store = settings_store
        self.job_runs = job_runs
        self.lock = lock or InProcessJobLock()
        self.lookback_days = lookback_days
        self.max_orders = max_orders
        self.lock_ttl_seconds = lock_ttl_seconds
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def _record(self, run: JobRun) -> None:
        if self.job_runs is None:
            return
        try:
            await self.job_runs.record_job_run(run)
        except Exception as e:
            logger.warning("Failed to record job run", shop=run.shop, status=run.status, error=str(e))

    async def run(self, shop: str) -> SimilarityResult:
        """Never raises; failures are recorded on the job run."""
        lock_key = f"similarity:{shop}"
        if not await self.lock.acquire(lock_key, self.lock_ttl_seconds):
            logger.info("Similarity run already in progress, skipping", shop=shop)
            await self._record(JobRun(shop=shop, job_name=JOB_NAME, status="skipped", completed_at=self.clock()))
            return SimilarityResult(shop=shop, success=False, status="skipped", error="already_running")

        run = JobRun(shop=shop, job_name=JOB_NAME, started_at=self.clock())
        started = time.perf_counter()
        try:
            result = await self._compute(shop, run)
        except Exception as e:
            logger.error("Similarity computation failed", shop=shop, error=str(e))
            run.status = "failed"
            run.error_count += 1
            run.error_message = str(e)
            result = SimilarityResult(shop=shop, success=False, status="failed", error=str(e))
        finally:
            await self.lock.release(lock_key)

        run.completed_at = self.clock()
        run.duration_ms = int((time.perf_counter() - started) * 1000)
        await self._record(run)
        return result

    async def _compute(self, shop: str, run: JobRun) -> SimilarityResult:
        orders = await self.orders.fetch_recent_orders(shop, self.max_orders, self.lookback_days)
        run.records_processed = len(orders)
        if not orders:
            # Keep last week's similarities rather than wiping them
            logger.info("No orders for similarity computation, skipping", shop=shop)
            run.status = "skipped"
            run.metadata = {"reason": "no_orders"}
            return SimilarityResult(shop=shop, success=True, status="skipped")

        records = compute_similarities(orders)
        await self.store.replace_similarities(shop, records)

        run.status = "success"
        run.records_updated = len(records)
        run.metadata = {
            "orders": len(orders),
            "products": len({r.product_id for r in records}),
        }
        logger.info(
            "Similarity computation complete",
            shop=shop,
            orders=len(orders),
            similarities=len(records),
        )
        return SimilarityResult(
            shop=shop,
            success=True,
            orders_analyzed=len(orders),
            similarities_created=len(records),
        )

    async def run_for_all_shops(self) -> list[SimilarityResult]:
        shops = await self.settings_store.list_shops()
        logger.info("Running similarity computation for all shops", shops=len(shops))
        results = [await self.run(shop) for shop in shops]
        logger.info(
            "Similarity computation finished for all shops",
            succeeded=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success),
        )
        return results
