"""Association miner.

Builds a time-decayed co-purchase graph from recent order history. The graph
is rebuilt per request and never persisted.
"""

import math
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import combinations

import structlog

from shared.constants import DECAY_HALF_LIFE_DAYS, ORDER_LOOKBACK_DAYS
from uplift_service.services.entities import Order

logger = structlog.get_logger()

SECONDS_PER_DAY = 86400.0


def decay_weight(age_days: float, half_life_days: float = DECAY_HALF_LIFE_DAYS) -> float:
    """Exponential half-life decay: 1.0 at age 0, 0.5 at one half-life.

    Negative ages (clock skew, future timestamps) count as age 0.
    """
    age_days = max(0.0, age_days)
    return math.exp(-math.log(2) * age_days / half_life_days)


def order_age_days(created_at: datetime, now: datetime) -> float:
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return max(0.0, (now - created_at).total_seconds() / SECONDS_PER_DAY)


@dataclass
class AssociationGraph:
    """Decayed order-presence mass and pairwise co-occurrence weights."""

    weighted_appearances: dict[str, float] = field(default_factory=dict)
    co_occurrence: dict[str, dict[str, float]] = field(default_factory=dict)
    order_count: int = 0
    multi_item_order_count: int = 0

    @property
    def total_mass(self) -> float:
        return sum(self.weighted_appearances.values())

    @property
    def is_empty(self) -> bool:
        return not self.co_occurrence

    def appearances(self, product_id: str) -> float:
        return self.weighted_appearances.get(product_id, 0.0)

    def neighbors(self, product_id: str) -> dict[str, float]:
        return self.co_occurrence.get(product_id, {})

    def __contains__(self, product_id: str) -> bool:
        return product_id in self.weighted_appearances


def build_association_graph(
    orders: Iterable[Order],
    now: datetime | None = None,
    half_life_days: float = DECAY_HALF_LIFE_DAYS,
    lookback_days: int = ORDER_LOOKBACK_DAYS,
) -> AssociationGraph:
    """
    Mine decayed co-purchase associations from a bounded order window.

    Each order with at least two distinct products contributes weight
    ``w = exp(-ln2 * age / half_life)`` once per product (quantities and
    duplicate lines are ignored) and once per unordered product pair,
    recorded symmetrically.

    Args:
        orders: Recent orders, typically capped at a few hundred
        now: Reference time for age calculation (defaults to UTC now)
        half_life_days: Days after which an order's weight is halved
        lookback_days: Orders older than this are ignored

    Returns:
        The association graph; empty when no multi-item order exists
    """
    now = now or datetime.now(timezone.utc)
    appearances: dict[str, float] = defaultdict(float)
    co_occurrence: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
    order_count = 0
    multi_item = 0

    for order in orders:
        age = order_age_days(order.created_at, now)
        if age > lookback_days:
            continue
        order_count += 1

        products = order.distinct_product_ids
        if len(products) < 2:
            continue
        multi_item += 1

        w = decay_weight(age, half_life_days)
        for pid in products:
            appearances[pid] += w
        for a, b in combinations(products, 2):
            co_occurrence[a][b] += w
            co_occurrence[b][a] += w

    graph = AssociationGraph(
        weighted_appearances=dict(appearances),
        co_occurrence={pid: dict(pairs) for pid, pairs in co_occurrence.items()},
        order_count=order_count,
        multi_item_order_count=multi_item,
    )
    logger.debug(
        "Built association graph",
        orders=order_count,
        multi_item_orders=multi_item,
        products=len(graph.weighted_appearances),
    )
    return graph
