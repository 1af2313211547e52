"""Unit tests for the recommendation engine over in-memory collaborators."""

import pytest

from conftest import (
    NOW,
    SHOP,
    FakeCatalog,
    FakeExperiments,
    FakeOrders,
    FakePerformanceStore,
    FakeSettingsStore,
    FakeSignals,
    FakeSubscriptions,
    FakeTracking,
    GuardedSignals,
    GuardedTracking,
    SessionGuard,
    make_order,
)
from uplift_service.exceptions import RateOrQuotaExceeded
from uplift_service.services.entities import Order, PerformanceSnapshot
from uplift_service.services.experiments import Experiment, Variant
from uplift_service.services.recommendation_engine import (
    RecommendationRequest,
    data_quality,
    normalize_ids,
)
from uplift_service.services.shop_settings import ShopSettings


def ids(payload: dict) -> list[str]:
    return [r["id"] for r in payload["recommendations"]]


def request(**kwargs) -> RecommendationRequest:
    kwargs.setdefault("product_id", "1")
    return RecommendationRequest(shop=SHOP, **kwargs)


class TestHelpers:
    def test_normalize_ids(self) -> None:
        assert normalize_ids(" 1 ", ["2", "", "1", " 3"], None) == ["1", "2", "3"]

    def test_anchors_combine_product_and_cart(self) -> None:
        req = RecommendationRequest(shop=SHOP, product_id="5", cart_ids=["1", "5", " "])
        assert req.anchors == ["5", "1"]

    def test_unit_prefers_customer(self) -> None:
        assert RecommendationRequest(shop=SHOP, session_id="s", customer_id="c").unit_id == "c"
        assert RecommendationRequest(shop=SHOP, session_id="s").unit_id == "s"

    @pytest.mark.parametrize(
        "orders,expected",
        [(0, "new_store"), (49, "new_store"), (50, "growing"), (200, "good"), (500, "rich")],
    )
    def test_data_quality(self, orders: int, expected: str) -> None:
        assert data_quality(orders) == expected


class TestGates:
    @pytest.mark.asyncio
    async def test_quota_reached_raises(self, make_engine) -> None:
        engine = make_engine(subscriptions=FakeSubscriptions(reached=True))

        with pytest.raises(RateOrQuotaExceeded):
            await engine.get_recommendations(request())

    @pytest.mark.asyncio
    async def test_disabled_shop(self, make_engine) -> None:
        engine = make_engine(settings=ShopSettings(enable_recommendations=False))

        payload, hit = await engine.get_recommendations(request())

        assert payload == {"recommendations": [], "limit_reached": False, "reason": "disabled"}
        assert not hit

    @pytest.mark.asyncio
    async def test_missing_settings_treated_as_disabled(self, make_engine) -> None:
        engine = make_engine(settings_store=FakeSettingsStore({}))

        payload, _ = await engine.get_recommendations(request())

        assert payload["reason"] == "disabled"

    @pytest.mark.asyncio
    async def test_hidden_after_threshold(self, make_engine) -> None:
        settings = ShopSettings(
            enable_recommendations=True,
            free_shipping_threshold=5000,
            hide_recommendations_after_threshold=True,
        )
        engine = make_engine(settings=settings)

        payload, _ = await engine.get_recommendations(request(subtotal=6000))

        assert payload["reason"] == "threshold_met"

    @pytest.mark.asyncio
    async def test_no_context(self, make_engine) -> None:
        engine = make_engine()

        payload, _ = await engine.get_recommendations(request(product_id=None, cart_ids=[" "]))

        assert payload["reason"] == "no_context"


class TestStatisticalRecommendations:
    @pytest.mark.asyncio
    async def test_co_purchased_products(self, make_engine) -> None:
        tracking = FakeTracking()
        engine = make_engine(tracking=tracking)

        payload, hit = await engine.get_recommendations(request())

        assert not hit
        assert ids(payload) == ["2", "3"]
        assert payload["limit_reached"] is False
        assert payload["recommendations"][0] == {
            "id": "2",
            "title": "Cap Red",
            "handle": "cap-red",
            "image": None,
            "price": 1500,
            "variant_id": "v2",
        }
        assert payload["ml_data"]["order_count"] == 60
        assert payload["ml_data"]["data_quality"] == "growing"
        assert payload["ml_data"]["cold_start"] is False
        assert tracking.served[0]["recommendationIds"] == ["2", "3"]

    @pytest.mark.asyncio
    async def test_cache_hit_skips_upstreams(self, make_engine, catalog_products, history) -> None:
        catalog = FakeCatalog(catalog_products)
        orders = FakeOrders(history)
        engine = make_engine(catalog=catalog, orders=orders)

        first, first_hit = await engine.get_recommendations(request())
        catalog_calls = len(catalog.calls)
        second, second_hit = await engine.get_recommendations(request())

        assert (first_hit, second_hit) == (False, True)
        assert second == first
        assert orders.calls == 1
        assert len(catalog.calls) == catalog_calls

    @pytest.mark.asyncio
    async def test_limit_respected(self, make_engine) -> None:
        engine = make_engine()

        one, _ = await engine.get_recommendations(request(limit=1))
        many, _ = await engine.get_recommendations(request(limit=99))

        assert ids(one) == ["2"]
        assert len(many["recommendations"]) <= 6

    @pytest.mark.asyncio
    async def test_blacklisted_product_removed(self, make_engine) -> None:
        performance = FakePerformanceStore({"2": PerformanceSnapshot("2", confidence=0.5, is_blacklisted=True)})
        engine = make_engine(performance=performance)

        payload, _ = await engine.get_recommendations(request())

        assert ids(payload) == ["3"]

    @pytest.mark.asyncio
    async def test_high_confidence_product_boosted(self, make_engine) -> None:
        performance = FakePerformanceStore({"3": PerformanceSnapshot("3", confidence=0.8)})
        engine = make_engine(performance=performance)

        payload, _ = await engine.get_recommendations(request())

        assert ids(payload) == ["3", "2"]

    @pytest.mark.asyncio
    async def test_cart_anchors_never_recommended(self, make_engine) -> None:
        engine = make_engine()

        payload, _ = await engine.get_recommendations(request(product_id=None, cart_ids=["1", "2"]))

        assert "1" not in ids(payload)
        assert "2" not in ids(payload)


class TestColdStartAndDegradation:
    @pytest.mark.asyncio
    async def test_cold_start_uses_trending(self, make_engine) -> None:
        engine = make_engine(orders=FakeOrders([make_order(f"o{i}", "1", "2") for i in range(5)]))

        payload, _ = await engine.get_recommendations(request())

        assert ids(payload) == ["4", "5", "2"]
        assert payload["ml_data"]["cold_start"] is True
        assert payload["ml_data"]["data_quality"] == "new_store"

    @pytest.mark.asyncio
    async def test_zero_orders_never_errors(self, make_engine) -> None:
        engine = make_engine(orders=FakeOrders([]))

        payload, _ = await engine.get_recommendations(request())

        assert ids(payload) == ["4", "5", "2"]
        assert "reason" not in payload

    @pytest.mark.asyncio
    async def test_order_history_outage_degrades_to_trending(self, make_engine) -> None:
        engine = make_engine(orders=FakeOrders(fail=True))

        payload, _ = await engine.get_recommendations(request())

        assert ids(payload) == ["4", "5", "2"]

    @pytest.mark.asyncio
    async def test_total_outage_returns_empty_list(self, make_engine) -> None:
        engine = make_engine(catalog=FakeCatalog(fail=True), orders=FakeOrders(fail=True))

        payload, _ = await engine.get_recommendations(request())

        assert payload["recommendations"] == []
        assert payload["limit_reached"] is False

    @pytest.mark.asyncio
    async def test_pipeline_bug_uses_emergency_fallback_uncached(self, make_engine) -> None:
        broken = FakeOrders([Order(id="bad", created_at=None)])
        engine = make_engine(orders=broken)

        payload, hit = await engine.get_recommendations(request())
        again, again_hit = await engine.get_recommendations(request())

        assert payload["reason"] == "primary_system_failure"
        assert ids(payload) == ["2", "3", "4", "5", "6", "7"]
        assert not hit
        assert not again_hit
        assert broken.calls == 2

    @pytest.mark.asyncio
    async def test_signal_outage_falls_back_to_statistical(self, make_engine) -> None:
        settings = ShopSettings(
            enable_recommendations=True,
            enable_ml_recommendations=True,
            ml_personalization_mode="ai_first",
        )
        engine = make_engine(settings=settings, signals=FakeSignals(fail=True))

        payload, _ = await engine.get_recommendations(request())

        assert ids(payload) == ["2", "3"]
        assert payload["ml_data"]["personalization_mode"] == "ai_first"


class TestManualAndExperiments:
    @pytest.mark.asyncio
    async def test_manual_list_filling_quota_wins_under_threshold(self, make_engine) -> None:
        settings = ShopSettings(
            enable_recommendations=True,
            enable_threshold_based_suggestions=True,
            free_shipping_threshold=3000,
            threshold_suggestion_mode="price",
            enable_manual_recommendations=True,
            manual_recommendation_products="6,7",
        )
        orders = FakeOrders([])
        engine = make_engine(settings=settings, orders=orders)

        payload, _ = await engine.get_recommendations(request(subtotal=1000, limit=2))

        # need = 2000: 2100 is closer than 2500
        assert ids(payload) == ["7", "6"]
        assert "ml_data" not in payload

    @pytest.mark.asyncio
    async def test_manual_products_lead_statistical(self, make_engine) -> None:
        settings = ShopSettings(
            enable_recommendations=True,
            complement_detection_mode="hybrid",
            manual_recommendation_products="7,8,1",
        )
        engine = make_engine(settings=settings)

        payload, _ = await engine.get_recommendations(request())

        # 8 is out of stock, 1 is the anchor
        assert ids(payload) == ["7", "2", "3"]

    @pytest.mark.asyncio
    async def test_experiment_variant_overrides_mode(self, make_engine) -> None:
        experiment = Experiment(
            id="exp-1",
            test_type="ml_algorithm",
            variants=(
                Variant(
                    id="popular",
                    traffic_percentage=100,
                    config={"mlEnabled": True, "personalizationMode": "popular"},
                ),
            ),
        )
        engine = make_engine(
            experiments=FakeExperiments(experiment),
            signals=FakeSignals(popular=[("4", 0.9)]),
        )

        payload, _ = await engine.get_recommendations(request(session_id="session-1"))

        assert ids(payload) == ["4", "2", "3"]
        assert payload["ml_data"]["experiment_id"] == "exp-1"
        assert payload["ml_data"]["variant_id"] == "popular"
        assert payload["ml_data"]["personalization_mode"] == "popular"
        assert payload["ml_data"]["enhanced"] is True


class TestBundles:
    @pytest.mark.asyncio
    async def test_invalid_params(self, make_engine) -> None:
        engine = make_engine()

        assert (await engine.get_bundles(SHOP, "cart", "1")).reason == "invalid_params"
        assert (await engine.get_bundles(SHOP, "product", None)).reason == "invalid_params"
        assert (await engine.get_bundles("", "product", "1")).reason == "invalid_params"

    @pytest.mark.asyncio
    async def test_invalid_product(self, make_engine) -> None:
        engine = make_engine()
        assert (await engine.get_bundles(SHOP, "product", "abc")).reason == "invalid_product"

    @pytest.mark.asyncio
    async def test_disabled_on_product_pages(self, make_engine) -> None:
        engine = make_engine(settings=ShopSettings(enable_recommendations=True, bundles_on_product_pages=False))
        assert (await engine.get_bundles(SHOP, "product", "1")).reason == "disabled_page"

    @pytest.mark.asyncio
    async def test_quota_reached_raises(self, make_engine) -> None:
        engine = make_engine(subscriptions=FakeSubscriptions(reached=True))

        with pytest.raises(RateOrQuotaExceeded):
            await engine.get_bundles(SHOP, "product", "1")

    @pytest.mark.asyncio
    async def test_dynamic_bundle(self, make_engine) -> None:
        engine = make_engine(now=lambda: NOW)

        result = await engine.get_bundles(SHOP, "product", "1")

        assert [b.id for b in result.bundles] == ["bundle_dynamic_1"]
        assert [p.id for p in result.bundles[0].products] == ["1", "2", "3"]
        assert result.currency == "USD"


class TestSharedSession:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", ["ai_first", "balanced", "popular"])
    async def test_tracking_and_signal_reads_never_overlap(self, make_engine, mode: str) -> None:
        guard = SessionGuard()
        settings = ShopSettings(
            enable_recommendations=True,
            enable_ml_recommendations=True,
            ml_personalization_mode=mode,
        )
        engine = make_engine(
            settings=settings,
            tracking=GuardedTracking(guard),
            signals=GuardedSignals(guard, content=[("6", 0.9)], popular=[("7", 1.0)]),
        )

        payload, _ = await engine.get_recommendations(request())

        assert payload["recommendations"]
        assert guard.calls == 2
        assert guard.overlaps == 0
