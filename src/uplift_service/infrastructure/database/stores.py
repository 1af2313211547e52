"""SQL-backed collaborators for the recommendation engine and the batch jobs."""

from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

import orjson
import structlog
from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from shared.constants import EVENT_CLICK, EVENT_IMPRESSION, EVENT_RECOMMENDATION_SERVED, LEARNING_EVENTS
from uplift_service.exceptions import ConfigurationMissing
from uplift_service.services.entities import (
    Attribution,
    DiscountConfig,
    PerformanceSnapshot,
    PersistedBundle,
    TrackingCounts,
    TrackingEvent,
)
from uplift_service.services.experiments import SUPPORTED_TEST_TYPES, Experiment, Variant
from uplift_service.services.learning import JobRun, PerformanceRecord
from uplift_service.services.shop_settings import ShopSettings
from uplift_service.services.similarity import SimilarityRecord

logger = structlog.get_logger()


def naive_utc(value: datetime) -> datetime:
    """Timestamps are stored as naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def timestamps(*names: str) -> list:
    """Bind timestamp params as ``DateTime`` so every driver stores one format."""
    return [bindparam(name, type_=DateTime()) for name in names]


def load_json(value: Any, default: Any = None) -> Any:
    if value is None:
        return default
    if isinstance(value, (bytes, str)):
        try:
            return orjson.loads(value)
        except orjson.JSONDecodeError:
            return default
    return value


def as_id_tuple(value: Any) -> tuple[str, ...]:
    items = load_json(value, default=[])
    if isinstance(items, str):
        items = items.split(",")
    if not isinstance(items, list):
        return ()
    return tuple(str(i).strip() for i in items if str(i).strip())


class SqlSettingsStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_settings(self, shop: str) -> ShopSettings:
        result = await self.session.execute(
            text("SELECT * FROM uplift.shop_settings WHERE shop = :shop"),
            {"shop": shop},
        )
        row = result.mappings().first()
        if row is None:
            raise ConfigurationMissing("shop_settings")
        return ShopSettings.model_validate(dict(row))

    async def list_shops(self) -> list[str]:
        result = await self.session.execute(
            text("SELECT DISTINCT shop FROM uplift.shop_settings ORDER BY shop")
        )
        return [row.shop for row in result.fetchall()]


class SqlSubscriptionStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def is_limit_reached(self, shop: str) -> bool:
        result = await self.session.execute(
            text("""
                SELECT is_limit_reached, order_limit, order_count
                FROM uplift.subscriptions
                WHERE shop = :shop
            """),
            {"shop": shop},
        )
        row = result.fetchone()
        if row is None:
            return False
        if row.is_limit_reached:
            return True
        return bool(row.order_limit and row.order_count >= row.order_limit)


class SqlTrackingStore:
    """Tracking store and tracking sink over ``tracking_events``."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_tracking_counts(
        self, shop: str, product_ids: Sequence[str], since: datetime
    ) -> dict[str, TrackingCounts]:
        if not product_ids:
            return {}
        result = await self.session.execute(
            text("""
                SELECT
                    product_id,
                    SUM(CASE WHEN event = :impression THEN 1 ELSE 0 END) AS impressions,
                    SUM(CASE WHEN event = :click THEN 1 ELSE 0 END) AS clicks
                FROM uplift.tracking_events
                WHERE shop = :shop
                  AND product_id IN :ids
                  AND created_at >= :since
                GROUP BY product_id
            """).bindparams(bindparam("ids", expanding=True), *timestamps("since")),
            {
                "shop": shop,
                "ids": list(product_ids),
                "since": naive_utc(since),
                "impression": EVENT_IMPRESSION,
                "click": EVENT_CLICK,
            },
        )
        return {
            row.product_id: TrackingCounts(impressions=int(row.impressions), clicks=int(row.clicks))
            for row in result.fetchall()
        }

    async def fetch_learning_events(self, shop: str, since: datetime) -> list[TrackingEvent]:
        result = await self.session.execute(
            text("""
                SELECT event, product_id, metadata, created_at
                FROM uplift.tracking_events
                WHERE shop = :shop
                  AND created_at >= :since
                  AND event IN :events
            """).bindparams(bindparam("events", expanding=True), *timestamps("since")),
            {"shop": shop, "since": naive_utc(since), "events": LEARNING_EVENTS},
        )
        return [
            TrackingEvent(
                event=row.event,
                product_id=row.product_id,
                metadata=load_json(row.metadata, default={}) or {},
                created_at=row.created_at,
            )
            for row in result.fetchall()
        ]

    async def fetch_attributions(self, shop: str, since: datetime) -> list[Attribution]:
        result = await self.session.execute(
            text("""
                SELECT product_id, order_id, attributed_revenue
                FROM uplift.recommendation_attributions
                WHERE shop = :shop AND created_at >= :since
            """).bindparams(*timestamps("since")),
            {"shop": shop, "since": naive_utc(since)},
        )
        return [
            Attribution(
                product_id=row.product_id,
                order_id=row.order_id,
                revenue=float(row.attributed_revenue or 0.0),
            )
            for row in result.fetchall()
        ]

    async def emit_recommendation_served(
        self,
        shop: str,
        anchors: Sequence[str],
        recommended_ids: Sequence[str],
        metadata: Mapping[str, Any],
    ) -> None:
        await self.session.execute(
            text("""
                INSERT INTO uplift.tracking_events
                (shop, event, product_id, session_id, source, metadata, created_at)
                VALUES
                (:shop, :event, :product_id, :session_id, :source, :metadata, :now)
            """).bindparams(*timestamps("now")),
            {
                "shop": shop,
                "event": EVENT_RECOMMENDATION_SERVED,
                "product_id": anchors[0] if anchors else None,
                "session_id": metadata.get("sessionId"),
                "source": "recommendations",
                "metadata": orjson.dumps({**metadata, "recommendationIds": list(recommended_ids)}).decode(),
                "now": naive_utc(datetime.now(timezone.utc)),
            },
        )


class SqlPerformanceStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_performance(self, shop: str, product_ids: Sequence[str]) -> dict[str, PerformanceSnapshot]:
        if not product_ids:
            return {}
        result = await self.session.execute(
            text("""
                SELECT product_id, confidence, is_blacklisted
                FROM uplift.product_performance
                WHERE shop = :shop AND product_id IN :ids
            """).bindparams(bindparam("ids", expanding=True)),
            {"shop": shop, "ids": list(product_ids)},
        )
        return {
            row.product_id: PerformanceSnapshot(
                product_id=row.product_id,
                confidence=float(row.confidence or 0.0),
                is_blacklisted=bool(row.is_blacklisted),
            )
            for row in result.fetchall()
        }

    async def upsert_performance(self, shop: str, product_id: str, metrics: PerformanceRecord) -> None:
        # Savepoint so one failed row does not abort the whole learning transaction
        async with self.session.begin_nested():
            await self.session.execute(
                text("""
                    INSERT INTO uplift.product_performance
                    (shop, product_id, impressions, clicks, purchases, revenue, ctr, cvr,
                     confidence, is_blacklisted, blacklist_reason, last_updated)
                    VALUES
                    (:shop, :product_id, :impressions, :clicks, :purchases, :revenue, :ctr, :cvr,
                     :confidence, :is_blacklisted, :blacklist_reason, :now)
                    ON CONFLICT (shop, product_id) DO UPDATE SET
                        impressions = :impressions,
                        clicks = :clicks,
                        purchases = :purchases,
                        revenue = :revenue,
                        ctr = :ctr,
                        cvr = :cvr,
                        confidence = :confidence,
                        is_blacklisted = :is_blacklisted,
                        blacklist_reason = :blacklist_reason,
                        last_updated = :now
                """).bindparams(*timestamps("now")),
                {
                    "shop": shop,
                    "product_id": product_id,
                    "impressions": metrics.impressions,
                    "clicks": metrics.clicks,
                    "purchases": metrics.purchases,
                    "revenue": metrics.revenue,
                    "ctr": metrics.ctr,
                    "cvr": metrics.cvr,
                    "confidence": metrics.confidence,
                    "is_blacklisted": metrics.is_blacklisted,
                    "blacklist_reason": metrics.blacklist_reason,
                    "now": naive_utc(datetime.now(timezone.utc)),
                },
            )


class SqlBundleStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_bundles_for_product(self, shop: str, product_id: str) -> list[PersistedBundle]:
        """Active manual and collection bundles; targeting is checked by the caller."""
        result = await self.session.execute(
            text("""
                SELECT id, name, description, type, discount_type, discount_value,
                       product_ids, collection_ids, assignment_type, assigned_products
                FROM uplift.bundles
                WHERE shop = :shop
                  AND status = 'active'
                  AND type IN ('manual', 'collection')
                ORDER BY updated_at DESC
            """),
            {"shop": shop},
        )
        bundles = [
            PersistedBundle(
                id=str(row.id),
                name=row.name,
                type=row.type,
                discount_type=row.discount_type or "percentage",
                discount_value=float(row.discount_value or 0.0),
                product_ids=as_id_tuple(row.product_ids),
                collection_ids=as_id_tuple(row.collection_ids),
                assignment_type=row.assignment_type or "specific",
                assigned_products=as_id_tuple(row.assigned_products),
                description=row.description or "",
            )
            for row in result.fetchall()
        ]
        return [b for b in bundles if b.targets(product_id)]

    async def get_active_ml_bundle_config(self, shop: str) -> DiscountConfig | None:
        result = await self.session.execute(
            text("""
                SELECT discount_type, discount_value
                FROM uplift.bundles
                WHERE shop = :shop AND status = 'active' AND type = 'ml'
                ORDER BY updated_at DESC
                LIMIT 1
            """),
            {"shop": shop},
        )
        row = result.fetchone()
        if row is None or row.discount_value is None:
            return None
        return DiscountConfig(
            discount_type=row.discount_type or "percentage",
            discount_value=float(row.discount_value),
        )


class SqlExperimentStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active_experiment(self, shop: str) -> Experiment | None:
        result = await self.session.execute(
            text("""
                SELECT id, test_type, status, attribution, active_variant_id
                FROM uplift.experiments
                WHERE shop = :shop
                  AND status IN ('running', 'completed')
                  AND test_type IN :types
                ORDER BY (status = 'running') DESC, created_at DESC
                LIMIT 1
            """).bindparams(bindparam("types", expanding=True)),
            {"shop": shop, "types": list(SUPPORTED_TEST_TYPES)},
        )
        row = result.fetchone()
        if row is None:
            return None

        variants = await self.session.execute(
            text("""
                SELECT id, traffic_percentage, config
                FROM uplift.experiment_variants
                WHERE experiment_id = :experiment_id
                ORDER BY id
            """),
            {"experiment_id": row.id},
        )
        return Experiment(
            id=str(row.id),
            test_type=row.test_type,
            status=row.status,
            attribution=row.attribution or "session",
            active_variant_id=str(row.active_variant_id) if row.active_variant_id is not None else None,
            variants=tuple(
                Variant(
                    id=str(v.id),
                    traffic_percentage=float(v.traffic_percentage or 0.0),
                    config=load_json(v.config, default={}) or {},
                )
                for v in variants.fetchall()
            ),
        )


class SqlJobRunStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def record_job_run(self, run: JobRun) -> None:
        await self.session.execute(
            text("""
                INSERT INTO uplift.job_runs
                (shop, job_name, status, started_at, completed_at, duration_ms,
                 records_processed, records_updated, error_count, error_message, metadata)
                VALUES
                (:shop, :job_name, :status, :started_at, :completed_at, :duration_ms,
                 :records_processed, :records_updated, :error_count, :error_message, :metadata)
            """).bindparams(*timestamps("started_at", "completed_at")),
            {
                "shop": run.shop,
                "job_name": run.job_name,
                "status": run.status,
                "started_at": naive_utc(run.started_at),
                "completed_at": naive_utc(run.completed_at) if run.completed_at else None,
                "duration_ms": run.duration_ms,
                "records_processed": run.records_processed,
                "records_updated": run.records_updated,
                "error_count": run.error_count,
                "error_message": run.error_message,
                "metadata": orjson.dumps(run.metadata).decode(),
            },
        )
        await self.session.commit()


class SqlSimilarityStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def replace_similarities(self, shop: str, records: Sequence[SimilarityRecord]) -> None:
        """Swap the shop's similarities in one savepoint; readers never see a partial set."""
        now = naive_utc(datetime.now(timezone.utc))
        async with self.session.begin_nested():
            await self.session.execute(
                text("DELETE FROM uplift.product_similarities WHERE shop = :shop"),
                {"shop": shop},
            )
            if not records:
                return
            await self.session.execute(
                text("""
                    INSERT INTO uplift.product_similarities
                    (shop, product_id, similar_product_id, co_purchase_count,
                     jaccard, frequency, score, computed_at)
                    VALUES
                    (:shop, :product_id, :similar_product_id, :co_purchase_count,
                     :jaccard, :frequency, :score, :now)
                """).bindparams(*timestamps("now")),
                [
                    {
                        "shop": shop,
                        "product_id": r.product_id,
                        "similar_product_id": r.similar_product_id,
                        "co_purchase_count": r.co_purchase_count,
                        "jaccard": r.jaccard,
                        "frequency": r.frequency,
                        "score": r.score,
                        "now": now,
                    }
                    for r in records
                ],
            )
