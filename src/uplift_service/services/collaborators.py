"""Interfaces of the external services the engine reads from and writes to.

Concrete adapters live under ``uplift_service.infrastructure``; tests supply
in-memory fakes.
"""

import asyncio
from collections.abc import Awaitable, Mapping, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from uplift_service.exceptions import UpliftError, UpstreamUnavailable
from uplift_service.services.entities import (
    Attribution,
    DiscountConfig,
    Order,
    PerformanceSnapshot,
    PersistedBundle,
    ProductSnapshot,
    TrackingCounts,
    TrackingEvent,
)
from uplift_service.services.experiments import Experiment
from uplift_service.services.shop_settings import ShopSettings

if TYPE_CHECKING:
    from uplift_service.services.learning import JobRun, PerformanceRecord
    from uplift_service.services.similarity import SimilarityRecord

T = TypeVar("T")


class OrderHistoryService(Protocol):
    async def fetch_recent_orders(self, shop: str, max_count: int, max_age_days: int) -> list[Order]: ...


class CatalogService(Protocol):
    async def get_products_by_ids(self, shop: str, ids: Sequence[str]) -> list[ProductSnapshot]: ...

    async def list_trending_products(self, shop: str, limit: int) -> list[ProductSnapshot]: ...

    async def list_catalog_products(
        self, shop: str, limit: int, category: str | None = None
    ) -> list[ProductSnapshot]: ...

    async def get_currency(self, shop: str) -> str: ...


class SettingsStore(Protocol):
    async def get_settings(self, shop: str) -> ShopSettings: ...

    async def list_shops(self) -> list[str]: ...


class TrackingStore(Protocol):
    async def get_tracking_counts(
        self, shop: str, product_ids: Sequence[str], since: datetime
    ) -> dict[str, TrackingCounts]: ...

    async def fetch_learning_events(self, shop: str, since: datetime) -> list[TrackingEvent]: ...

    async def fetch_attributions(self, shop: str, since: datetime) -> list[Attribution]: ...


class TrackingSink(Protocol):
    async def emit_recommendation_served(
        self,
        shop: str,
        anchors: Sequence[str],
        recommended_ids: Sequence[str],
        metadata: Mapping[str, Any],
    ) -> None: ...


class PerformanceStore(Protocol):
    async def get_performance(self, shop: str, product_ids: Sequence[str]) -> dict[str, PerformanceSnapshot]: ...

    async def upsert_performance(self, shop: str, product_id: str, metrics: "PerformanceRecord") -> None: ...


class BundleStore(Protocol):
    async def find_bundles_for_product(self, shop: str, product_id: str) -> list[PersistedBundle]: ...

    async def get_active_ml_bundle_config(self, shop: str) -> DiscountConfig | None: ...


class SubscriptionStore(Protocol):
    async def is_limit_reached(self, shop: str) -> bool: ...


class SecondarySignalProvider(Protocol):
    """Co-purchase similarity and popularity signals, as ``(product_id, score)`` pairs."""

    async def content_recommendations(
        self, shop: str, anchors: Sequence[str], limit: int
    ) -> list[tuple[str, float]]: ...

    async def popular_recommendations(
        self, shop: str, limit: int, exclude: Sequence[str] = ()
    ) -> list[tuple[str, float]]: ...


class SimilarityStore(Protocol):
    async def replace_similarities(self, shop: str, records: Sequence["SimilarityRecord"]) -> None: ...


class ExperimentStore(Protocol):
    async def get_active_experiment(self, shop: str) -> Experiment | None: ...


class JobRunStore(Protocol):
    async def record_job_run(self, run: "JobRun") -> None: ...


class JobLock(Protocol):
    async def acquire(self, key: str, ttl_seconds: int) -> bool: ...

    async def release(self, key: str) -> None: ...


async def call_upstream(service: str, awaitable: Awaitable[T], timeout: float) -> T:
    """Await a collaborator call with a timeout.

    Engine errors pass through unchanged; any other failure becomes
    ``UpstreamUnavailable``.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except UpliftError:
        raise
    except Exception as e:
        raise UpstreamUnavailable(service, e) from e
