"""Recommendation engine service.

Serves cart and product-page recommendations by combining operator-curated
products, co-purchase associations mined from recent orders, and optional
content/popularity signals, under price and diversity guardrails. Also
resolves product-page bundles.

Upstream failures never reach the storefront: each source tier degrades to an
empty ``TierResult`` carrying a ``FallbackReason`` and the blender works with
whatever is left.
"""

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from shared.constants import (
    REASON_DISABLED,
    REASON_DISABLED_PAGE,
    REASON_INVALID_PARAMS,
    REASON_INVALID_PRODUCT,
    REASON_NO_CONTEXT,
    REASON_PRIMARY_FAILURE,
    REASON_THRESHOLD_MET,
)
from uplift_service.config import Settings, get_settings
from uplift_service.exceptions import (
    ConfigurationMissing,
    InvalidInput,
    RateOrQuotaExceeded,
    UpstreamUnavailable,
)
from uplift_service.infrastructure.cache import RecommendationCache, recommendation_cache_key
from uplift_service.services.association import build_association_graph
from uplift_service.services.blending import blend, sort_by_price_proximity
from uplift_service.services.bundles import BundleComposer, BundleResult, parse_product_id
from uplift_service.services.collaborators import (
    BundleStore,
    CatalogService,
    ExperimentStore,
    OrderHistoryService,
    PerformanceStore,
    SecondarySignalProvider,
    SettingsStore,
    SubscriptionStore,
    TrackingSink,
    TrackingStore,
    call_upstream,
)
from uplift_service.services.entities import (
    FallbackReason,
    Order,
    PersonalizationMode,
    ProductSnapshot,
    Recommendation,
    ThresholdMode,
    TierResult,
)
from uplift_service.services.experiments import ExperimentOverride, resolve_override
from uplift_service.services.guardrails import (
    GuardrailPolicy,
    anchor_median,
    apply_guardrails,
    clamp_limit,
    filter_manual,
    need_amount,
)
from uplift_service.services.scoring import apply_ctr, apply_performance, score_candidates
from uplift_service.services.shop_settings import ShopSettings

logger = structlog.get_logger()


def normalize_ids(*groups: str | Sequence[str] | None) -> list[str]:
    """Strip, drop empties and de-duplicate ids, keeping first-seen order."""
    ids: list[str] = []
    for group in groups:
        if group is None:
            continue
        values = [group] if isinstance(group, str) else group
        for value in values:
            pid = str(value).strip()
            if pid and pid not in ids:
                ids.append(pid)
    return ids


def data_quality(order_count: int) -> str:
    if order_count >= 500:
        return "rich"
    if order_count >= 200:
        return "good"
    if order_count >= 50:
        return "growing"
    return "new_store"


@dataclass
class RecommendationRequest:
    shop: str
    product_id: str | None = None
    cart_ids: list[str] = field(default_factory=list)
    limit: int | str | None = None
    subtotal: int | None = None
    session_id: str | None = None
    customer_id: str | None = None

    @property
    def anchors(self) -> list[str]:
        return normalize_ids(self.product_id, self.cart_ids)

    @property
    def unit_id(self) -> str | None:
        return self.customer_id or self.session_id


def empty_payload(reason: str | None = None, limit_reached: bool = False) -> dict[str, Any]:
    payload: dict[str, Any] = {"recommendations": [], "limit_reached": limit_reached}
    if reason:
        payload["reason"] = reason
    return payload


class RecommendationEngine:
    """Engine for generating cart and product-page recommendations."""

    def __init__(
        self,
        catalog: CatalogService,
        orders: OrderHistoryService,
        settings_store: SettingsStore,
        tracking: TrackingStore,
        tracking_sink: TrackingSink,
        performance: PerformanceStore,
        subscriptions: SubscriptionStore | None = None,
        signals: SecondarySignalProvider | None = None,
        experiments: ExperimentStore | None = None,
        bundle_store: BundleStore | None = None,
        cache: RecommendationCache | None = None,
        config: Settings | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self.catalog = catalog
        self.orders = orders
        self.settings_store = settings_store
        self.tracking = tracking
        self.tracking_sink = tracking_sink
        self.performance = performance
        self.subscriptions = subscriptions
        self.signals = signals
        self.experiments = experiments
        self.bundle_store = bundle_store
        self.config = config or get_settings()
        self.cache = cache or RecommendationCache(ttl_seconds=self.config.recommendation_cache_ttl_seconds)
        self.now = now or (lambda: datetime.now(timezone.utc))
        self.timeout = self.config.upstream_timeout_seconds

    # -------------------------------------------------------------------------
    # Request gates
    # -------------------------------------------------------------------------

    async def _check_quota(self, shop: str) -> None:
        if self.subscriptions is None:
            return
        try:
            reached = await call_upstream("subscriptions", self.subscriptions.is_limit_reached(shop), self.timeout)
        except UpstreamUnavailable as e:
            logger.warning("Subscription check failed", shop=shop, error=e.message)
            return
        if reached:
            raise RateOrQuotaExceeded(shop)

    async def _load_settings(self, shop: str) -> ShopSettings | None:
        try:
            return await call_upstream("settings", self.settings_store.get_settings(shop), self.timeout)
        except ConfigurationMissing:
            logger.debug("No settings configured", shop=shop)
        except UpstreamUnavailable as e:
            logger.warning("Settings lookup failed", shop=shop, error=e.message)
        return None

    # -------------------------------------------------------------------------
    # Recommendations
    # -------------------------------------------------------------------------

    async def get_recommendations(self, request: RecommendationRequest) -> tuple[dict[str, Any], bool]:
        """
        Get recommendations for a cart or product page.

        Args:
            request: Shop, anchor product and/or cart, requested limit and
                cart subtotal (minor units)

        Returns:
            ``(payload, cache_hit)``. The payload holds ``recommendations``,
            ``limit_reached``, an optional ``reason`` when empty and optional
            ``ml_data``.

        Raises:
            RateOrQuotaExceeded: The shop reached its subscription order limit
        """
        await self._check_quota(request.shop)

        settings = await self._load_settings(request.shop)
        if settings is None or not settings.enable_recommendations:
            return empty_payload(REASON_DISABLED), False

        limit = clamp_limit(
            request.limit,
            settings.max_recommendations,
            self.config.max_recommendation_limit,
            default=self.config.default_recommendation_limit,
        )
        need = need_amount(settings.free_shipping_threshold, request.subtotal) if settings.threshold_active else 0

        if (
            settings.hide_recommendations_after_threshold
            and settings.free_shipping_threshold > 0
            and request.subtotal is not None
            and need_amount(settings.free_shipping_threshold, request.subtotal) <= 0
        ):
            return empty_payload(REASON_THRESHOLD_MET), False

        anchors = request.anchors
        if not anchors:
            return empty_payload(REASON_NO_CONTEXT), False

        key = recommendation_cache_key(
            request.shop,
            request.product_id,
            request.cart_ids,
            limit,
            request.subtotal,
            settings.threshold_active,
            request.unit_id,
        )

        async def compute() -> dict[str, Any]:
            try:
                return await self._compute(request, settings, anchors, limit, need)
            except Exception as e:
                logger.error("Recommendation pipeline failed", shop=request.shop, error=str(e))
                return await self._emergency_fallback(request.shop, anchors, limit)

        return await self.cache.get_or_compute(
            key,
            compute,
            should_cache=lambda payload: payload.get("reason") != REASON_PRIMARY_FAILURE,
        )

    async def _manual_tier(
        self, shop: str, settings: ShopSettings, anchors: list[str], policy: GuardrailPolicy
    ) -> TierResult:
        if not settings.manual_enabled or not settings.manual_recommendation_products:
            return TierResult.failed(FallbackReason.NOT_CONFIGURED)
        try:
            products = await call_upstream(
                "catalog",
                self.catalog.get_products_by_ids(shop, settings.manual_recommendation_products),
                self.timeout,
            )
        except UpstreamUnavailable as e:
            logger.warning("Manual products lookup failed", shop=shop, error=e.message)
            return TierResult.failed(FallbackReason.CATALOG_UNAVAILABLE)

        by_id = {p.id: p for p in products}
        ordered = [by_id[pid] for pid in settings.manual_recommendation_products if pid in by_id]
        return TierResult(candidates=filter_manual(ordered, policy, exclude=anchors))

    async def _experiment_override(self, request: RecommendationRequest) -> ExperimentOverride | None:
        if self.experiments is None or not request.unit_id:
            return None
        try:
            experiment = await call_upstream(
                "experiments", self.experiments.get_active_experiment(request.shop), self.timeout
            )
            return resolve_override(experiment, request.unit_id)
        except Exception as e:
            logger.warning("Experiment lookup failed", shop=request.shop, error=str(e))
            return None

    async def _fetch_orders(self, shop: str) -> list[Order] | None:
        try:
            return await call_upstream(
                "orders",
                self.orders.fetch_recent_orders(
                    shop, self.config.max_orders_per_request, self.config.order_lookback_days
                ),
                self.timeout,
            )
        except UpstreamUnavailable as e:
            logger.warning("Order history unavailable", shop=shop, error=e.message)
            return None

    async def _products(self, shop: str, ids: Sequence[str]) -> dict[str, ProductSnapshot] | None:
        if not ids:
            return {}
        try:
            products = await call_upstream("catalog", self.catalog.get_products_by_ids(shop, ids), self.timeout)
        except UpstreamUnavailable as e:
            logger.warning("Catalog lookup failed", shop=shop, error=e.message)
            return None
        return {p.id: p for p in products}

    async def _tracking_counts(self, shop: str, ids: Sequence[str]):
        if not ids:
            return {}
        since = self.now() - timedelta(days=self.config.ctr_lookback_days)
        try:
            return await call_upstream(
                "tracking", self.tracking.get_tracking_counts(shop, ids, since), self.timeout
            )
        except UpstreamUnavailable as e:
            logger.warning("Tracking counts unavailable, using baseline CTR", shop=shop, error=e.message)
            return None

    async def _trending_products(self, shop: str, limit: int) -> list[ProductSnapshot] | None:
        try:
            return await call_upstream(
                "catalog", self.catalog.list_trending_products(shop, limit), self.timeout
            )
        except UpstreamUnavailable as e:
            logger.warning("Trending products unavailable", shop=shop, error=e.message)
            return None

    async def _signal_ids(
        self, shop: str, mode: PersonalizationMode, anchors: list[str], limit: int
    ) -> list[tuple[str, float]] | None:
        if self.signals is None:
            return None
        try:
            if mode in (PersonalizationMode.AI_FIRST, PersonalizationMode.BALANCED):
                return await call_upstream(
                    "signals", self.signals.content_recommendations(shop, anchors, limit), self.timeout
                )
            if mode == PersonalizationMode.POPULAR:
                return await call_upstream(
                    "signals", self.signals.popular_recommendations(shop, limit, anchors), self.timeout
                )
        except UpstreamUnavailable as e:
            logger.warning("Secondary signal unavailable", shop=shop, mode=mode.value, error=e.message)
        return None

    async def _compute(
        self,
        request: RecommendationRequest,
        settings: ShopSettings,
        anchors: list[str],
        limit: int,
        need: int,
    ) -> dict[str, Any]:
        shop = request.shop
        price_mode = settings.threshold_active and settings.threshold_suggestion_mode == ThresholdMode.PRICE
        base_policy = GuardrailPolicy(limit=limit, need_amount=need, threshold_active=settings.threshold_active)

        manual, override, orders = await asyncio.gather(
            self._manual_tier(shop, settings, anchors, base_policy),
            self._experiment_override(request),
            self._fetch_orders(shop),
        )

        # Operator-curated list wins outright when it fills the quota under a threshold-aware mode
        if len(manual.candidates) >= limit and settings.threshold_active:
            recs = manual.candidates[:limit]
            if price_mode and need > 0:
                recs = sort_by_price_proximity(recs, need)
            return {"recommendations": [r.to_dict() for r in recs], "limit_reached": False}

        ml_enabled = settings.enable_ml_recommendations
        mode = settings.ml_personalization_mode
        if override is not None:
            if override.ml_enabled is not None:
                ml_enabled = override.ml_enabled
            if override.personalization_mode is not None:
                mode = override.personalization_mode
        if not ml_enabled:
            mode = PersonalizationMode.BASIC

        graph = build_association_graph(
            orders or [],
            now=self.now(),
            half_life_days=self.config.decay_half_life_days,
            lookback_days=self.config.order_lookback_days,
        )
        order_count = graph.order_count
        cold_start = order_count < self.config.cold_start_order_threshold
        scored = score_candidates(graph, anchors)[: self.config.candidate_pool_size]
        scored_ids = [c.product_id for c in scored]

        wants_signal = mode != PersonalizationMode.BASIC and not cold_start

        async def stored_signals():
            # Tracking counts and the secondary signal share one database session
            counts = await self._tracking_counts(shop, scored_ids)
            pairs = await self._signal_ids(shop, mode, anchors, limit * 2) if wants_signal else None
            return counts, pairs

        snapshots, trending_products, (counts, signal_pairs) = await asyncio.gather(
            self._products(shop, normalize_ids(anchors, scored_ids)),
            self._trending_products(shop, limit * 2) if cold_start else _resolved([]),
            stored_signals(),
        )

        policy = replace(
            base_policy,
            anchor_median=anchor_median(snapshots[a].price for a in anchors if a in snapshots)
            if snapshots
            else None,
        )

        # Statistical tier
        if orders is None:
            statistical = TierResult.failed(FallbackReason.ORDERS_UNAVAILABLE)
        elif snapshots is None:
            statistical = TierResult.failed(FallbackReason.CATALOG_UNAVAILABLE)
        elif not scored:
            statistical = TierResult.failed(FallbackReason.NO_ASSOCIATION_DATA)
        else:
            ranked = [
                (snapshots[c.product_id], c.final_score)
                for c in apply_ctr(scored, counts or {})
                if c.product_id in snapshots
            ]
            statistical = TierResult(
                candidates=apply_guardrails(ranked, policy, exclude=anchors),
                fallback_reason=FallbackReason.TRACKING_UNAVAILABLE if counts is None else None,
            )

        # Cold-start trending goes through stock, threshold and diversity only
        if trending_products is None:
            trending = TierResult.failed(FallbackReason.CATALOG_UNAVAILABLE)
        else:
            count = len(trending_products)
            ranked = [(p, float(count - i)) for i, p in enumerate(trending_products)]
            trending = TierResult(
                candidates=apply_guardrails(ranked, replace(policy, anchor_median=None), exclude=anchors)
            )

        secondary = TierResult()
        if wants_signal:
            if signal_pairs is None:
                secondary = TierResult.failed(FallbackReason.SIGNAL_UNAVAILABLE)
            else:
                signal_products = await self._products(shop, [pid for pid, _ in signal_pairs])
                if signal_products is None:
                    secondary = TierResult.failed(FallbackReason.CATALOG_UNAVAILABLE)
                else:
                    ranked = [(signal_products[pid], s) for pid, s in signal_pairs if pid in signal_products]
                    secondary = TierResult(candidates=apply_guardrails(ranked, policy, exclude=anchors))

        tiers = [manual, statistical, trending, secondary]
        performance = await self._performance(
            shop, normalize_ids(*[[r.id for r in t.candidates] for t in tiers])
        )
        manual, statistical, trending, secondary = [
            replace(t, candidates=apply_performance(t.candidates, performance)) for t in tiers
        ]

        result = blend(
            limit=limit,
            manual=manual,
            statistical=statistical,
            trending=trending,
            secondary=secondary,
            mode=mode,
            order_count=order_count,
            anchors=anchors,
            need=need,
            price_proximity=price_mode,
            cold_start_threshold=self.config.cold_start_order_threshold,
        )

        quality = data_quality(order_count)
        ml_data = {
            "enhanced": mode != PersonalizationMode.BASIC,
            "order_count": order_count,
            "data_quality": quality,
            "personalization_mode": mode.value,
            "cold_start": result.cold_start,
        }
        if override is not None:
            ml_data["experiment_id"] = override.experiment_id
            ml_data["variant_id"] = override.variant_id
        if result.fallback_reasons:
            logger.info(
                "Recommendation tiers degraded",
                shop=shop,
                reasons=[r.value for r in result.fallback_reasons],
            )

        recommended_ids = [r.id for r in result.recommendations]
        if recommended_ids:
            await self._emit_served(request, anchors, recommended_ids, quality, mode)

        return {
            "recommendations": [r.to_dict() for r in result.recommendations],
            "limit_reached": False,
            "ml_data": ml_data,
        }

    async def _performance(self, shop: str, ids: list[str]):
        if not ids:
            return {}
        try:
            return await call_upstream("performance", self.performance.get_performance(shop, ids), self.timeout)
        except UpstreamUnavailable as e:
            logger.warning("Performance records unavailable", shop=shop, error=e.message)
            return {}

    async def _emit_served(
        self,
        request: RecommendationRequest,
        anchors: list[str],
        recommended_ids: list[str],
        quality: str,
        mode: PersonalizationMode,
    ) -> None:
        metadata = {
            "recommendationIds": recommended_ids,
            "anchors": anchors,
            "dataQuality": quality,
            "mlMode": mode.value,
            "sessionId": request.session_id,
            "customerId": request.customer_id,
        }
        try:
            await call_upstream(
                "tracking",
                self.tracking_sink.emit_recommendation_served(request.shop, anchors, recommended_ids, metadata),
                self.timeout,
            )
        except UpstreamUnavailable as e:
            logger.warning("Failed to record served recommendations", shop=request.shop, error=e.message)

    async def _emergency_fallback(self, shop: str, anchors: list[str], limit: int) -> dict[str, Any]:
        try:
            products = await call_upstream(
                "catalog", self.catalog.list_catalog_products(shop, limit + len(anchors)), self.timeout
            )
        except UpstreamUnavailable as e:
            logger.warning("Emergency catalog fallback failed", shop=shop, error=e.message)
            return empty_payload(REASON_PRIMARY_FAILURE)

        blocked = set(anchors)
        recs = [Recommendation.from_snapshot(p) for p in products if p.available and p.id not in blocked]
        payload = empty_payload(REASON_PRIMARY_FAILURE)
        payload["recommendations"] = [r.to_dict() for r in recs[:limit]]
        return payload

    # -------------------------------------------------------------------------
    # Bundles
    # -------------------------------------------------------------------------

    async def get_bundles(self, shop: str, context: str | None, product_id: str | None) -> BundleResult:
        """
        Get bundles for a product page.

        Raises:
            RateOrQuotaExceeded: The shop reached its subscription order limit
        """
        if not shop or context != "product" or not product_id:
            return BundleResult(reason=REASON_INVALID_PARAMS)
        try:
            anchor_id = parse_product_id(product_id)
        except InvalidInput:
            return BundleResult(reason=REASON_INVALID_PRODUCT)

        await self._check_quota(shop)

        settings = await self._load_settings(shop)
        if settings is None or not settings.bundles_on_product_pages:
            return BundleResult(reason=REASON_DISABLED_PAGE)
        if self.bundle_store is None:
            return BundleResult(reason=REASON_DISABLED_PAGE)

        composer = BundleComposer(
            catalog=self.catalog,
            orders=self.orders,
            bundle_store=self.bundle_store,
            max_orders=self.config.max_orders_per_request,
            lookback_days=self.config.order_lookback_days,
            timeout=self.timeout,
            clock=self.now,
        )
        return await composer.compose(shop, anchor_id)


async def _resolved(value):
    return value
