"""Bundle composition and pricing.

Persisted bundles (manual, then collection-scoped) win over the dynamic
"frequently bought together" bundle, which is only built when nothing the
merchant configured targets the anchor product. All prices are integer minor
currency units.
"""

import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import structlog

from shared.constants import (
    BUNDLE_CANDIDATE_POOL,
    CATALOG_FALLBACK_POOL,
    MAX_BUNDLE_COMPLEMENTS,
    REASON_NO_BUNDLES,
    REASON_NO_VARIANTS,
)
from uplift_service.exceptions import InvalidInput, UpstreamUnavailable
from uplift_service.services.association import build_association_graph
from uplift_service.services.collaborators import (
    BundleStore,
    CatalogService,
    OrderHistoryService,
    call_upstream,
)
from uplift_service.services.entities import DiscountConfig, PersistedBundle, ProductSnapshot, round_half_up
from uplift_service.services.scoring import score_candidates

logger = structlog.get_logger()

SOURCE_MANUAL = "manual"
SOURCE_COLLECTION = "collection"
SOURCE_DYNAMIC = "orders_based"

_SUBSCRIPTION_MARKERS = ("selling plan", "subscription")


@dataclass
class BundleOffer:
    id: str
    name: str
    products: list[ProductSnapshot]
    regular_total: int
    bundle_price: int
    discount_percent: int
    discount_type: str
    savings_amount: int
    source: str
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "products": [
                {
                    "id": p.id,
                    "title": p.title,
                    "handle": p.handle,
                    "price": p.price,
                    "image": p.image,
                    "variant_id": p.variant_id,
                }
                for p in self.products
            ],
            "regular_total": self.regular_total,
            "bundle_price": self.bundle_price,
            "discount_percent": self.discount_percent,
            "discount_type": self.discount_type,
            "savings_amount": self.savings_amount,
            "source": self.source,
        }


@dataclass
class BundleResult:
    bundles: list[BundleOffer] = field(default_factory=list)
    currency: str = "USD"
    reason: str | None = None


def parse_product_id(raw: str | int | None) -> str:
    """Normalize a storefront product id; catalog ids are numeric."""
    value = str(raw).strip() if raw is not None else ""
    if not value.isdigit():
        raise InvalidInput("product_id", raw)
    return value


def is_bundle_eligible(product: ProductSnapshot) -> bool:
    """Purchasable and not a subscription/selling-plan-only product."""
    if not product.available or product.is_subscription_only:
        return False
    title = product.title.lower()
    if any(marker in title for marker in _SUBSCRIPTION_MARKERS):
        return False
    return "selling-plan" not in product.handle.lower()


def price_bundle(prices: Sequence[int], discount: DiscountConfig | None) -> tuple[int, int, int, int]:
    """
    Price a bundle in integer minor units.

    Percentage discounts round once at the end, halves up; fixed discounts
    are given in major units and subtracted as minor units. The bundle price is clamped to
    ``[0, regular_total]`` so savings are never negative.

    Returns:
        ``(regular_total, bundle_price, savings, discount_percent)``
    """
    regular_total = sum(max(0, int(p)) for p in prices)
    if discount is None or discount.discount_value <= 0:
        return regular_total, regular_total, 0, 0

    if discount.discount_type == "fixed":
        bundle_price = regular_total - round_half_up(Decimal(str(discount.discount_value)) * 100)
    else:
        bundle_price = round_half_up(regular_total * (100 - Decimal(str(discount.discount_value))) / 100)

    bundle_price = max(0, min(regular_total, bundle_price))
    savings = regular_total - bundle_price
    if discount.discount_type == "fixed":
        percent = round_half_up(Decimal(savings * 100) / regular_total) if regular_total > 0 else 0
    else:
        percent = round_half_up(min(100.0, discount.discount_value))
    return regular_total, bundle_price, savings, percent


def bundle_name(complements: Sequence[ProductSnapshot]) -> str:
    if not complements:
        return "Frequently Bought Together"
    titles = " + ".join(p.title for p in complements[:2])
    suffix = "..." if len(complements) > 2 else ""
    return f"Frequently Bought Together: {titles}{suffix}"


def compose_bundle(
    bundle_id: str,
    name: str,
    anchor: ProductSnapshot,
    complements: Sequence[ProductSnapshot],
    discount: DiscountConfig | None,
    source: str,
    description: str = "",
) -> BundleOffer | None:
    """Anchor first, then unique complements; ``None`` if nothing to pair with."""
    seen = {anchor.id}
    members = [anchor]
    for product in complements:
        if product.id in seen:
            continue
        seen.add(product.id)
        members.append(product)
    if len(members) < 2:
        return None

    regular_total, bundle_price, savings, percent = price_bundle([p.price for p in members], discount)
    return BundleOffer(
        id=bundle_id,
        name=name,
        description=description,
        products=members,
        regular_total=regular_total,
        bundle_price=bundle_price,
        discount_percent=percent,
        discount_type=discount.discount_type if discount else "percentage",
        savings_amount=savings,
        source=source,
    )


def pick_complements(
    anchor: ProductSnapshot,
    related: Sequence[ProductSnapshot],
    limit: int = MAX_BUNDLE_COMPLEMENTS,
) -> list[ProductSnapshot]:
    picked: list[ProductSnapshot] = []
    used = {anchor.id}
    for product in related:
        if product.id in used or not is_bundle_eligible(product):
            continue
        used.add(product.id)
        picked.append(product)
        if len(picked) >= limit:
            break
    return picked


def sample_fallback(
    anchor: ProductSnapshot,
    pool: Sequence[ProductSnapshot],
    rng: random.Random,
    limit: int = MAX_BUNDLE_COMPLEMENTS,
) -> list[ProductSnapshot]:
    eligible = [p for p in pool if p.id != anchor.id and is_bundle_eligible(p)]
    unique = list({p.id: p for p in eligible}.values())
    if len(unique) <= limit:
        return unique
    return rng.sample(unique, limit)


class BundleComposer:
    """Builds the bundle offers shown on a product page."""

    def __init__(
        self,
        catalog: CatalogService,
        orders: OrderHistoryService,
        bundle_store: BundleStore,
        rng: random.Random | None = None,
        max_orders: int = 200,
        lookback_days: int = 90,
        timeout: float = 3.0,
        clock: Callable[[], datetime] | None = None,
    ):
        self.catalog = catalog
        self.orders = orders
        self.bundle_store = bundle_store
        self.rng = rng or random.Random()
        self.max_orders = max_orders
        self.lookback_days = lookback_days
        self.timeout = timeout
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def _call(self, service: str, coro):
        return await call_upstream(service, coro, self.timeout)

    async def persisted_bundles(self, shop: str, anchor: ProductSnapshot) -> list[BundleOffer]:
        """Manual bundles if any target the anchor, else collection bundles."""
        try:
            configured = await self._call("bundles", self.bundle_store.find_bundles_for_product(shop, anchor.id))
        except UpstreamUnavailable as e:
            logger.warning("Bundle store lookup failed", shop=shop, product_id=anchor.id, error=e.message)
            return []

        targeting = [b for b in configured if b.targets(anchor.id)]
        for bundle_type in (SOURCE_MANUAL, SOURCE_COLLECTION):
            offers = []
            for bundle in (b for b in targeting if b.type == bundle_type):
                offer = await self._persisted_offer(shop, anchor, bundle)
                if offer is not None:
                    offers.append(offer)
            if offers:
                return offers
        return []

    async def _persisted_offer(
        self, shop: str, anchor: ProductSnapshot, bundle: PersistedBundle
    ) -> BundleOffer | None:
        try:
            if bundle.type == SOURCE_COLLECTION:
                if not bundle.collection_ids:
                    return None
                pool = await self._call(
                    "catalog",
                    self.catalog.list_catalog_products(
                        shop, CATALOG_FALLBACK_POOL, category=bundle.collection_ids[0]
                    ),
                )
                members = [p for p in pool if p.id != anchor.id][:MAX_BUNDLE_COMPLEMENTS]
            else:
                ids = [pid for pid in bundle.product_ids if pid != anchor.id]
                members = await self._call("catalog", self.catalog.get_products_by_ids(shop, ids)) if ids else []
        except UpstreamUnavailable as e:
            logger.warning("Skipping persisted bundle", bundle_id=bundle.id, error=e.message)
            return None

        return compose_bundle(
            bundle_id=bundle.id,
            name=bundle.name,
            anchor=anchor,
            complements=members,
            discount=DiscountConfig(bundle.discount_type, bundle.discount_value),
            source=bundle.type,
            description=bundle.description,
        )

    async def related_products(self, shop: str, anchor: ProductSnapshot) -> list[ProductSnapshot]:
        """Top statistical complements for a single anchor."""
        orders = await self._call(
            "orders", self.orders.fetch_recent_orders(shop, self.max_orders, self.lookback_days)
        )
        graph = build_association_graph(orders, now=self.clock(), lookback_days=self.lookback_days)
        scored = score_candidates(graph, [anchor.id])[:BUNDLE_CANDIDATE_POOL]
        if not scored:
            return []
        products = await self._call(
            "catalog", self.catalog.get_products_by_ids(shop, [c.product_id for c in scored])
        )
        by_id = {p.id: p for p in products}
        return [by_id[c.product_id] for c in scored if c.product_id in by_id]

    async def dynamic_bundle(self, shop: str, anchor: ProductSnapshot) -> BundleOffer | None:
        complements: list[ProductSnapshot] = []
        try:
            complements = pick_complements(anchor, await self.related_products(shop, anchor))
        except UpstreamUnavailable as e:
            logger.warning("Association lookup for bundle failed", shop=shop, error=e.message)

        if not complements:
            for category in (*anchor.categories, None):
                try:
                    pool = await self._call(
                        "catalog",
                        self.catalog.list_catalog_products(shop, CATALOG_FALLBACK_POOL, category=category),
                    )
                except UpstreamUnavailable as e:
                    logger.warning("Catalog fallback failed", shop=shop, category=category, error=e.message)
                    continue
                complements = sample_fallback(anchor, pool, self.rng)
                if complements:
                    break

        discount = None
        try:
            discount = await self._call("bundles", self.bundle_store.get_active_ml_bundle_config(shop))
        except UpstreamUnavailable as e:
            logger.warning("ML bundle config lookup failed", shop=shop, error=e.message)

        return compose_bundle(
            bundle_id=f"bundle_dynamic_{anchor.id}",
            name=bundle_name(complements),
            anchor=anchor,
            complements=complements,
            discount=discount,
            source=SOURCE_DYNAMIC,
            description="Products often purchased together",
        )

    async def compose(self, shop: str, product_id: str) -> BundleResult:
        """
        Resolve bundles for a product page.

        Returns an empty result with a reason code when the anchor cannot be
        bundled; never raises for upstream failures.
        """
        currency = "USD"
        try:
            currency = await self._call("catalog", self.catalog.get_currency(shop)) or currency
        except UpstreamUnavailable as e:
            logger.warning("Currency lookup failed", shop=shop, error=e.message)

        try:
            products = await self._call("catalog", self.catalog.get_products_by_ids(shop, [product_id]))
        except UpstreamUnavailable as e:
            logger.warning("Anchor product lookup failed", shop=shop, product_id=product_id, error=e.message)
            return BundleResult(currency=currency, reason=REASON_NO_VARIANTS)

        anchor = next((p for p in products if p.id == product_id), None)
        if anchor is None or not anchor.available:
            return BundleResult(currency=currency, reason=REASON_NO_VARIANTS)

        persisted = await self.persisted_bundles(shop, anchor)
        if persisted:
            logger.info("Serving persisted bundles", shop=shop, product_id=product_id, count=len(persisted))
            return BundleResult(bundles=persisted, currency=currency)

        offer = await self.dynamic_bundle(shop, anchor)
        if offer is None:
            return BundleResult(currency=currency, reason=REASON_NO_BUNDLES)
        return BundleResult(bundles=[offer], currency=currency)
