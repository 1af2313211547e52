"""Guardrail filter applied to ranked candidates before they are served."""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import structlog

from shared.constants import (
    DEFAULT_RECOMMENDATION_LIMIT,
    MAX_RECOMMENDATION_LIMIT,
    PRICE_GAP_HIGH,
    PRICE_GAP_LOW,
)
from uplift_service.services.entities import ProductSnapshot, Recommendation

logger = structlog.get_logger()


def diversity_key(handle: str | None) -> str:
    """First segment of the product slug, e.g. ``"tee"`` for ``"tee-red-xl"``."""
    if not handle:
        return ""
    return handle.strip().lower().split("-")[0]


def anchor_median(prices: Iterable[int | None]) -> int | None:
    """Upper median of the known, positive anchor prices."""
    known = sorted(p for p in prices if p is not None and p > 0)
    if not known:
        return None
    return known[len(known) // 2]


def need_amount(free_shipping_threshold: int, subtotal: int | None) -> int:
    """Minor units still missing to reach the free-shipping threshold."""
    if free_shipping_threshold <= 0:
        return 0
    return max(0, free_shipping_threshold - max(0, subtotal or 0))


def clamp_limit(
    limit: int | str | None,
    max_recommendations: int | None = None,
    hard_cap: int = MAX_RECOMMENDATION_LIMIT,
    default: int = DEFAULT_RECOMMENDATION_LIMIT,
) -> int:
    """
    Normalize a requested limit into ``[1, hard_cap]``.

    Malformed or missing values fall back to the default limit. When the shop
    configured a maximum, the request can only narrow it.
    """
    try:
        value = int(limit) if limit is not None else default
    except (TypeError, ValueError):
        value = default
    value = max(1, min(hard_cap, value))

    if max_recommendations is not None:
        shop_cap = max(1, min(hard_cap, int(max_recommendations)))
        value = min(value, shop_cap)
    return value


@dataclass(frozen=True)
class GuardrailPolicy:
    limit: int = DEFAULT_RECOMMENDATION_LIMIT
    need_amount: int = 0
    threshold_active: bool = False
    anchor_median: int | None = None
    gap_low: float = PRICE_GAP_LOW
    gap_high: float = PRICE_GAP_HIGH
    enforce_diversity: bool = True

    def in_stock(self, product: ProductSnapshot) -> bool:
        return product.available

    def meets_threshold(self, product: ProductSnapshot) -> bool:
        if not self.threshold_active or self.need_amount <= 0:
            return True
        return product.price >= self.need_amount

    def within_price_gap(self, product: ProductSnapshot) -> bool:
        if not self.anchor_median:
            return True
        ratio = product.price / self.anchor_median
        return self.gap_low <= ratio <= self.gap_high


def apply_guardrails(
    ranked: Sequence[tuple[ProductSnapshot, float]],
    policy: GuardrailPolicy,
    exclude: Iterable[str] = (),
) -> list[Recommendation]:
    """
    Accept candidates in score order until the limit is filled.

    Checks short-circuit in order: stock, threshold gap, price gap, diversity
    key. A failing candidate is skipped without any score adjustment.
    """
    blocked = set(exclude)
    used_keys: set[str] = set()
    accepted: list[Recommendation] = []
    rejected = {"stock": 0, "threshold": 0, "price_gap": 0, "diversity": 0}

    for product, score in ranked:
        if len(accepted) >= policy.limit:
            break
        if product.id in blocked:
            continue
        if not policy.in_stock(product):
            rejected["stock"] += 1
            continue
        if not policy.meets_threshold(product):
            rejected["threshold"] += 1
            continue
        if not policy.within_price_gap(product):
            rejected["price_gap"] += 1
            continue

        key = diversity_key(product.handle)
        if policy.enforce_diversity and key:
            if key in used_keys:
                rejected["diversity"] += 1
                continue
            used_keys.add(key)

        blocked.add(product.id)
        accepted.append(Recommendation.from_snapshot(product, score=score))

    logger.debug("Guardrails applied", accepted=len(accepted), **rejected)
    return accepted


def filter_manual(
    products: Sequence[ProductSnapshot],
    policy: GuardrailPolicy,
    exclude: Iterable[str] = (),
) -> list[Recommendation]:
    """Operator-curated products: stock and threshold checks only, order kept."""
    blocked = set(exclude)
    accepted: list[Recommendation] = []
    for product in products:
        if len(accepted) >= policy.limit:
            break
        if product.id in blocked:
            continue
        if not policy.in_stock(product) or not policy.meets_threshold(product):
            continue
        blocked.add(product.id)
        accepted.append(Recommendation.from_snapshot(product))
    return accepted
