"""Source blending.

Merges the candidate tiers (manual, cold-start trending, secondary signal and
statistical) into one bounded, de-duplicated list. Everything here is a pure
function of the tier results; tiers that failed upstream arrive as empty
``TierResult`` values carrying a ``FallbackReason``.
"""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from shared.constants import (
    AI_FIRST_SIGNAL_SHARE,
    BALANCED_SIGNAL_SHARE,
    COLD_START_ORDER_THRESHOLD,
    COLD_START_SHARE,
)
from uplift_service.services.entities import (
    FallbackReason,
    PersonalizationMode,
    Recommendation,
    TierResult,
)


@dataclass
class BlendResult:
    recommendations: list[Recommendation] = field(default_factory=list)
    cold_start: bool = False
    mode: PersonalizationMode = PersonalizationMode.BASIC
    fallback_reasons: list[FallbackReason] = field(default_factory=list)


class _Accumulator:
    """Ordered, bounded, de-duplicated result list."""

    def __init__(self, limit: int, exclude: Iterable[str]):
        self.limit = limit
        self.items: list[Recommendation] = []
        self._seen = set(exclude)

    @property
    def remaining(self) -> int:
        return max(0, self.limit - len(self.items))

    def add(self, candidates: Iterable[Recommendation], count: int | None = None) -> int:
        """Append up to ``count`` unseen candidates (default: until full)."""
        budget = self.remaining if count is None else min(count, self.remaining)
        added = 0
        for rec in candidates:
            if added >= budget:
                break
            if rec.id in self._seen:
                continue
            self._seen.add(rec.id)
            self.items.append(rec)
            added += 1
        return added

    def interleave(self, first: Sequence[Recommendation], second: Sequence[Recommendation]) -> None:
        for pair in zip(first, second):
            for rec in pair:
                self.add([rec], 1)
        shorter = min(len(first), len(second))
        self.add(first[shorter:])
        self.add(second[shorter:])


def is_cold_start(order_count: int, threshold: int = COLD_START_ORDER_THRESHOLD) -> bool:
    return order_count < threshold


def sort_by_price_proximity(recs: Sequence[Recommendation], need: int) -> list[Recommendation]:
    """Closest-to-threshold first (stable)."""
    return sorted(recs, key=lambda r: abs(r.price - need))


def blend(
    limit: int,
    manual: TierResult,
    statistical: TierResult,
    trending: TierResult | None = None,
    secondary: TierResult | None = None,
    mode: PersonalizationMode = PersonalizationMode.BASIC,
    order_count: int = 0,
    anchors: Iterable[str] = (),
    need: int = 0,
    price_proximity: bool = False,
    cold_start_threshold: int = COLD_START_ORDER_THRESHOLD,
) -> BlendResult:
    """
    Blend source tiers into at most ``limit`` recommendations.

    Manual candidates always come first. With fewer than
    ``cold_start_threshold`` orders, trending products take 70% of the
    remaining slots and statistical candidates 30%. Otherwise the
    personalization mode decides how much of the remainder the secondary
    signal gets (ai_first 70%, balanced 40% interleaved, popular all of it,
    basic none). The statistical tier always backfills whatever is left.

    Args:
        limit: Maximum list length (already clamped by the caller)
        manual: Operator-curated candidates, in operator order
        statistical: Guardrailed association candidates, best first
        trending: Platform trending products for cold start
        secondary: Content-similarity or popularity candidates
        mode: Effective personalization mode after experiment overrides
        order_count: Eligible historical orders seen by the miner
        anchors: Ids that must never be recommended
        need: Minor units missing to reach the free-shipping threshold
        price_proximity: Re-sort the final list by distance to ``need``

    Returns:
        BlendResult with the served list and any tier fallback reasons
    """
    trending = trending or TierResult()
    secondary = secondary or TierResult()
    acc = _Accumulator(limit, anchors)
    acc.add(manual.candidates)

    cold = is_cold_start(order_count, cold_start_threshold)
    stats = statistical.candidates
    signal = secondary.candidates
    remaining = acc.remaining

    if remaining > 0:
        if cold:
            acc.add(trending.candidates, math.ceil(remaining * COLD_START_SHARE))
            acc.add(stats, math.floor(remaining * (1 - COLD_START_SHARE)))
            acc.add(trending.candidates)
        elif mode == PersonalizationMode.AI_FIRST:
            acc.add(signal, math.floor(remaining * AI_FIRST_SIGNAL_SHARE))
            acc.add(stats)
        elif mode == PersonalizationMode.BALANCED:
            signal_slots = math.floor(remaining * BALANCED_SIGNAL_SHARE)
            acc.interleave(stats[: remaining - signal_slots], signal[:signal_slots])
        elif mode == PersonalizationMode.POPULAR:
            acc.add(signal)

        # Statistical tier is the floor for every mode; secondary signal last
        acc.add(stats)
        acc.add(signal)

    recs = acc.items
    if price_proximity and need > 0:
        recs = sort_by_price_proximity(recs, need)

    reasons = [
        tier.fallback_reason
        for tier in (manual, statistical, trending, secondary)
        if tier.fallback_reason is not None
    ]
    return BlendResult(
        recommendations=recs,
        cold_start=cold,
        mode=mode,
        fallback_reasons=reasons,
    )
