"""Unit tests for bundle pricing and composition."""

import random

import pytest

from conftest import NOW, SHOP, FakeBundleStore, FakeCatalog, FakeOrders, product
from uplift_service.exceptions import InvalidInput
from uplift_service.services.bundles import (
    BundleComposer,
    compose_bundle,
    is_bundle_eligible,
    parse_product_id,
    price_bundle,
    sample_fallback,
)
from uplift_service.services.entities import DiscountConfig, PersistedBundle


class TestPriceBundle:
    def test_percentage_rounds_once(self) -> None:
        total, price, savings, pct = price_bundle([1999, 1999, 1999], DiscountConfig("percentage", 15))

        assert total == 5997
        assert price == 5097  # 5997 * 0.85 = 5097.45
        assert savings == 900
        assert pct == 15

    def test_fixed_discount_in_major_units(self) -> None:
        total, price, savings, pct = price_bundle([1999, 1999, 1999], DiscountConfig("fixed", 5))

        assert price == 5497
        assert savings == 500
        assert pct == 8

    def test_fixed_discount_clamped_at_zero(self) -> None:
        _, price, savings, pct = price_bundle([1000, 500], DiscountConfig("fixed", 100))

        assert price == 0
        assert savings == 1500
        assert pct == 100

    def test_percentage_rounds_half_cent_up(self) -> None:
        total, price, savings, pct = price_bundle([1001], DiscountConfig("percentage", 50))

        assert total == 1001
        assert price == 501  # 500.5 rounds up, not to even
        assert savings == 500
        assert pct == 50

    def test_half_cent_below_even_rounds_up(self) -> None:
        _, price, _, _ = price_bundle([1005], DiscountConfig("percentage", 50))
        assert price == 503

    def test_fixed_discount_percent_rounds_half_up(self) -> None:
        # 50 off 2000 is exactly 2.5 percent
        _, price, savings, pct = price_bundle([2000], DiscountConfig("fixed", 0.5))

        assert price == 1950
        assert savings == 50
        assert pct == 3

    def test_no_discount(self) -> None:
        assert price_bundle([1000, 500], None) == (1500, 1500, 0, 0)
        assert price_bundle([1000, 500], DiscountConfig("percentage", 0)) == (1500, 1500, 0, 0)

    def test_savings_never_negative(self) -> None:
        _, price, savings, _ = price_bundle([1000], DiscountConfig("percentage", -20))
        assert price == 1000
        assert savings == 0


class TestHelpers:
    def test_parse_product_id(self) -> None:
        assert parse_product_id(" 123 ") == "123"
        assert parse_product_id(77) == "77"
        with pytest.raises(InvalidInput):
            parse_product_id("gid://product/1")
        with pytest.raises(InvalidInput):
            parse_product_id(None)

    def test_subscription_products_not_eligible(self) -> None:
        assert is_bundle_eligible(product("1", "coffee-beans", 1000))
        assert not is_bundle_eligible(product("2", "coffee-subscription", 1000))
        assert not is_bundle_eligible(product("3", "coffee", 1000, is_subscription_only=True))
        assert not is_bundle_eligible(product("4", "coffee", 1000, available=False))

    def test_compose_puts_anchor_first_once(self) -> None:
        anchor = product("1", "tee", 2000)
        offer = compose_bundle(
            "b1", "Set", anchor, [anchor, product("2", "cap", 1000), product("2", "cap", 1000)], None, "manual"
        )

        assert [p.id for p in offer.products] == ["1", "2"]
        assert offer.regular_total == 3000

    def test_compose_needs_a_complement(self) -> None:
        anchor = product("1", "tee", 2000)
        assert compose_bundle("b1", "Set", anchor, [anchor], None, "manual") is None

    def test_sample_fallback_is_seeded(self) -> None:
        anchor = product("1", "tee", 2000)
        pool = [product(str(i), f"item{i}", 1000) for i in range(1, 12)]

        first = sample_fallback(anchor, pool, random.Random(7))
        second = sample_fallback(anchor, pool, random.Random(7))

        assert [p.id for p in first] == [p.id for p in second]
        assert len(first) == 2
        assert "1" not in [p.id for p in first]


class TestBundleComposer:
    @pytest.mark.asyncio
    async def test_dynamic_bundle_from_orders(self, catalog_products, history) -> None:
        composer = BundleComposer(
            catalog=FakeCatalog(catalog_products),
            orders=FakeOrders(history),
            bundle_store=FakeBundleStore(ml_config=DiscountConfig("percentage", 10)),
            rng=random.Random(1),
            clock=lambda: NOW,
        )

        result = await composer.compose(SHOP, "1")

        assert result.reason is None
        offer = result.bundles[0]
        assert offer.id == "bundle_dynamic_1"
        assert offer.source == "orders_based"
        assert [p.id for p in offer.products] == ["1", "2", "3"]
        assert offer.regular_total == 4500
        assert offer.bundle_price == 4050
        assert offer.savings_amount == 450
        assert offer.discount_percent == 10

    @pytest.mark.asyncio
    async def test_manual_bundle_wins_over_collection_and_dynamic(self, catalog_products, history) -> None:
        bundles = [
            PersistedBundle(
                id="col-1", name="Category set", type="collection", collection_ids=("31",), assignment_type="all"
            ),
            PersistedBundle(
                id="man-1",
                name="Tee + Mug",
                type="manual",
                discount_type="fixed",
                discount_value=2,
                product_ids=("1", "4"),
            ),
        ]
        composer = BundleComposer(
            catalog=FakeCatalog(catalog_products),
            orders=FakeOrders(history),
            bundle_store=FakeBundleStore(bundles),
            clock=lambda: NOW,
        )

        result = await composer.compose(SHOP, "1")

        assert [b.id for b in result.bundles] == ["man-1"]
        offer = result.bundles[0]
        assert [p.id for p in offer.products] == ["1", "4"]
        assert offer.bundle_price == 3000
        assert offer.source == "manual"

    @pytest.mark.asyncio
    async def test_collection_bundle_when_no_manual(self, catalog_products, history) -> None:
        bundles = [
            PersistedBundle(
                id="col-1", name="Category set", type="collection", collection_ids=("31",), assignment_type="all"
            ),
        ]
        composer = BundleComposer(
            catalog=FakeCatalog(catalog_products),
            orders=FakeOrders(history),
            bundle_store=FakeBundleStore(bundles),
            clock=lambda: NOW,
        )

        result = await composer.compose(SHOP, "1")

        assert [b.id for b in result.bundles] == ["col-1"]
        assert [p.id for p in result.bundles[0].products] == ["1", "4"]

    @pytest.mark.asyncio
    async def test_category_fallback_without_history(self, catalog_products) -> None:
        composer = BundleComposer(
            catalog=FakeCatalog(catalog_products),
            orders=FakeOrders([]),
            bundle_store=FakeBundleStore(),
            rng=random.Random(3),
        )

        result = await composer.compose(SHOP, "1")

        offer = result.bundles[0]
        assert offer.products[0].id == "1"
        complements = [p.id for p in offer.products[1:]]
        assert len(complements) == 2
        assert set(complements) <= {"2", "3", "5"}
        assert offer.bundle_price == offer.regular_total

    @pytest.mark.asyncio
    async def test_orders_outage_still_builds_fallback(self, catalog_products) -> None:
        composer = BundleComposer(
            catalog=FakeCatalog(catalog_products),
            orders=FakeOrders(fail=True),
            bundle_store=FakeBundleStore(),
            rng=random.Random(3),
        )

        result = await composer.compose(SHOP, "1")

        assert len(result.bundles) == 1
        assert "1" not in [p.id for p in result.bundles[0].products[1:]]

    @pytest.mark.asyncio
    async def test_unavailable_anchor(self, catalog_products) -> None:
        composer = BundleComposer(
            catalog=FakeCatalog(catalog_products),
            orders=FakeOrders([]),
            bundle_store=FakeBundleStore(),
        )

        assert (await composer.compose(SHOP, "8")).reason == "no_variants"
        assert (await composer.compose(SHOP, "404")).reason == "no_variants"

    @pytest.mark.asyncio
    async def test_nothing_to_pair_with(self) -> None:
        composer = BundleComposer(
            catalog=FakeCatalog([product("1", "tee", 2000)], currency="EUR"),
            orders=FakeOrders([]),
            bundle_store=FakeBundleStore(),
        )

        result = await composer.compose(SHOP, "1")

        assert result.bundles == []
        assert result.reason == "no_bundles"
        assert result.currency == "EUR"
