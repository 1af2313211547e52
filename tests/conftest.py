"""Pytest configuration and fixtures."""

import asyncio
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from uplift_service.config import Settings, get_settings
from uplift_service.exceptions import ConfigurationMissing, UpstreamUnavailable
from uplift_service.infrastructure.cache import RecommendationCache
from uplift_service.infrastructure.database.models import SCHEMA, Base
from uplift_service.main import create_app
from uplift_service.services.entities import (
    DiscountConfig,
    LineItem,
    Order,
    PerformanceSnapshot,
    PersistedBundle,
    ProductSnapshot,
    TrackingCounts,
)
from uplift_service.services.recommendation_engine import RecommendationEngine
from uplift_service.services.shop_settings import ShopSettings

SHOP = "demo-store"
NOW = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)


def make_order(order_id: str, *product_ids: str, days_ago: float = 0.0) -> Order:
    return Order(
        id=order_id,
        created_at=NOW - timedelta(days=days_ago),
        line_items=tuple(LineItem(product_id=pid, quantity=1, price=1000) for pid in product_ids),
    )


def product(pid: str, handle: str, price: int, available: bool = True, **kwargs: Any) -> ProductSnapshot:
    return ProductSnapshot(
        id=pid,
        title=handle.replace("-", " ").title(),
        handle=handle,
        price=price,
        available=available,
        variant_id=f"v{pid}",
        **kwargs,
    )


# =============================================================================
# Fake collaborators
# =============================================================================


class FakeCatalog:
    def __init__(
        self,
        products: Sequence[ProductSnapshot] = (),
        trending: Sequence[str] = (),
        currency: str = "USD",
        fail: bool = False,
    ):
        self.products = {p.id: p for p in products}
        self.trending = list(trending)
        self.currency = currency
        self.fail = fail
        self.calls: list[str] = []

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if self.fail:
            raise UpstreamUnavailable("catalog", "connection refused")

    async def get_products_by_ids(self, shop: str, ids: Sequence[str]) -> list[ProductSnapshot]:
        self._check("get_products_by_ids")
        return [self.products[pid] for pid in ids if pid in self.products]

    async def list_trending_products(self, shop: str, limit: int) -> list[ProductSnapshot]:
        self._check("list_trending_products")
        return [self.products[pid] for pid in self.trending if pid in self.products][:limit]

    async def list_catalog_products(
        self, shop: str, limit: int, category: str | None = None
    ) -> list[ProductSnapshot]:
        self._check("list_catalog_products")
        pool = [p for p in self.products.values() if category is None or category in p.categories]
        return pool[:limit]

    async def get_currency(self, shop: str) -> str:
        self._check("get_currency")
        return self.currency


class FakeOrders:
    def __init__(self, orders: Sequence[Order] = (), fail: bool = False):
        self.orders = list(orders)
        self.fail = fail
        self.calls = 0

    async def fetch_recent_orders(self, shop: str, max_count: int, max_age_days: int) -> list[Order]:
        self.calls += 1
        if self.fail:
            raise UpstreamUnavailable("orders", "timeout")
        return self.orders[:max_count]


class FakeSettingsStore:
    def __init__(self, settings: dict[str, ShopSettings] | None = None):
        self.settings = settings or {}

    async def get_settings(self, shop: str) -> ShopSettings:
        if shop not in self.settings:
            raise ConfigurationMissing("shop_settings")
        return self.settings[shop]

    async def list_shops(self) -> list[str]:
        return sorted(self.settings)


class FakeTracking:
    """Tracking store and sink."""

    def __init__(self, counts: dict[str, TrackingCounts] | None = None, events=None, attributions=None):
        self.counts = counts or {}
        self.events = list(events or [])
        self.attributions = list(attributions or [])
        self.served: list[dict[str, Any]] = []
        self.fail_reads = False

    async def get_tracking_counts(self, shop, product_ids, since):
        return {pid: self.counts[pid] for pid in product_ids if pid in self.counts}

    async def fetch_learning_events(self, shop, since):
        if self.fail_reads:
            raise RuntimeError("tracking store down")
        return list(self.events)

    async def fetch_attributions(self, shop, since):
        return list(self.attributions)

    async def emit_recommendation_served(self, shop, anchors, recommended_ids, metadata):
        self.served.append({"shop": shop, "anchors": list(anchors), "ids": list(recommended_ids), **metadata})


class FakePerformanceStore:
    def __init__(self, records: dict[str, PerformanceSnapshot] | None = None):
        self.records = records or {}
        self.upserts: dict[str, Any] = {}
        self.fail_ids: set[str] = set()

    async def get_performance(self, shop, product_ids):
        return {pid: self.records[pid] for pid in product_ids if pid in self.records}

    async def upsert_performance(self, shop, product_id, metrics):
        if product_id in self.fail_ids:
            raise RuntimeError("write conflict")
        self.upserts[product_id] = metrics


class FakeBundleStore:
    def __init__(self, bundles: Sequence[PersistedBundle] = (), ml_config: DiscountConfig | None = None):
        self.bundles = list(bundles)
        self.ml_config = ml_config

    async def find_bundles_for_product(self, shop, product_id):
        return [b for b in self.bundles if b.targets(product_id)]

    async def get_active_ml_bundle_config(self, shop):
        return self.ml_config


class FakeSubscriptions:
    def __init__(self, reached: bool = False):
        self.reached = reached

    async def is_limit_reached(self, shop: str) -> bool:
        return self.reached


class FakeSignals:
    def __init__(self, content=None, popular=None, fail: bool = False):
        self.content = list(content or [])
        self.popular = list(popular or [])
        self.fail = fail

    async def content_recommendations(self, shop, anchors, limit):
        if self.fail:
            raise UpstreamUnavailable("signals", "index offline")
        return self.content[:limit]

    async def popular_recommendations(self, shop, limit, exclude=()):
        if self.fail:
            raise UpstreamUnavailable("signals", "index offline")
        return [(pid, s) for pid, s in self.popular if pid not in exclude][:limit]


class FakeSimilarityStore:
    def __init__(self):
        self.replaced: dict[str, list] = {}

    async def replace_similarities(self, shop, records):
        self.replaced[shop] = list(records)


class FakeExperiments:
    def __init__(self, experiment=None):
        self.experiment = experiment

    async def get_active_experiment(self, shop):
        return self.experiment


class FakeJobRuns:
    def __init__(self):
        self.runs = []

    async def record_job_run(self, run):
        self.runs.append(run)


class SessionGuard:
    """Counts overlapping calls on what would be one shared database session."""

    def __init__(self):
        self.busy = False
        self.calls = 0
        self.overlaps = 0

    async def use(self) -> None:
        self.calls += 1
        if self.busy:
            self.overlaps += 1
        self.busy = True
        # Yield so a concurrent caller would run while this one is in flight
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        self.busy = False


class GuardedTracking(FakeTracking):
    def __init__(self, guard: SessionGuard, **kwargs: Any):
        super().__init__(**kwargs)
        self.guard = guard

    async def get_tracking_counts(self, shop, product_ids, since):
        await self.guard.use()
        return await super().get_tracking_counts(shop, product_ids, since)

    async def fetch_learning_events(self, shop, since):
        await self.guard.use()
        return await super().fetch_learning_events(shop, since)

    async def fetch_attributions(self, shop, since):
        await self.guard.use()
        return await super().fetch_attributions(shop, since)


class GuardedSignals(FakeSignals):
    def __init__(self, guard: SessionGuard, **kwargs: Any):
        super().__init__(**kwargs)
        self.guard = guard

    async def content_recommendations(self, shop, anchors, limit):
        await self.guard.use()
        return await super().content_recommendations(shop, anchors, limit)

    async def popular_recommendations(self, shop, limit, exclude=()):
        await self.guard.use()
        return await super().popular_recommendations(shop, limit, exclude)


class FakeClock:
    """Monotonic clock for cache tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Get test settings with overrides."""
    return Settings(
        app_env="test",
        debug=True,
        postgres_host="localhost",
        postgres_port=5432,
        postgres_user="test",
        postgres_password="test",
        postgres_db="test_db",
        redis_host="localhost",
        redis_port=6379,
        commerce_api_token="test-token",
    )


@pytest.fixture
def catalog_products() -> list[ProductSnapshot]:
    """Anchor ``1`` plus complements with distinct slugs."""
    return [
        product("1", "tee-black", 2000, categories=("23",)),
        product("2", "cap-red", 1500, categories=("23",)),
        product("3", "sock-blue", 1000, categories=("23",)),
        product("4", "mug-white", 1200, categories=("31",)),
        product("5", "tee-white", 2100, categories=("23",)),
        product("6", "bag-canvas", 2500),
        product("7", "belt-brown", 2100),
        product("8", "scarf-wool", 1800, available=False),
    ]


@pytest.fixture
def history() -> list[Order]:
    """60 same-day orders: 1+2 thirty times, 1+3 twenty times, 4+5 ten times."""
    orders = [make_order(f"a{i}", "1", "2") for i in range(30)]
    orders += [make_order(f"b{i}", "1", "3") for i in range(20)]
    orders += [make_order(f"c{i}", "4", "5") for i in range(10)]
    return orders


@pytest.fixture
def shop_settings() -> ShopSettings:
    return ShopSettings(enable_recommendations=True, max_recommendations=6)


@pytest.fixture
def make_engine(
    test_settings: Settings,
    catalog_products: list[ProductSnapshot],
    history: list[Order],
    shop_settings: ShopSettings,
) -> Callable[..., RecommendationEngine]:
    """Build an engine over fakes; any collaborator can be overridden by keyword."""

    def factory(**overrides: Any) -> RecommendationEngine:
        settings = overrides.pop("settings", shop_settings)
        tracking = overrides.pop("tracking", FakeTracking())
        deps: dict[str, Any] = {
            "catalog": FakeCatalog(catalog_products, trending=["4", "5", "2"]),
            "orders": FakeOrders(history),
            "settings_store": FakeSettingsStore({SHOP: settings}),
            "tracking": tracking,
            "tracking_sink": tracking,
            "performance": FakePerformanceStore(),
            "subscriptions": FakeSubscriptions(),
            "signals": FakeSignals(),
            "experiments": FakeExperiments(),
            "bundle_store": FakeBundleStore(),
            "cache": RecommendationCache(ttl_seconds=60, clock=FakeClock()),
            "config": test_settings,
            "now": lambda: NOW,
        }
        deps.update(overrides)
        return RecommendationEngine(**deps)

    return factory


@pytest.fixture
def app(test_settings: Settings) -> Any:
    """Create test application."""
    # Override settings
    def get_test_settings() -> Settings:
        return test_settings

    app = create_app()
    app.dependency_overrides[get_settings] = get_test_settings
    return app


@pytest.fixture
def client(app: Any) -> TestClient:
    """Create synchronous test client."""
    return TestClient(app)


# =============================================================================
# In-memory database
# =============================================================================


@pytest_asyncio.fixture
async def session_factory():
    """
    Session factory over an in-memory SQLite database with the engine schema.

    One shared connection; the ``uplift`` schema is an attached database, and
    transactions are begun explicitly so savepoints behave like Postgres.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute(f"ATTACH DATABASE ':memory:' AS {SCHEMA}")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()
