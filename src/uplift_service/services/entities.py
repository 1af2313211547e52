"""Value types shared by the recommendation and bundling services.

Prices are integer minor currency units (cents) everywhere in the engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any


def round_half_up(value: Any) -> int:
    """Round to the nearest integer; halves go away from zero."""
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class LineItem:
    product_id: str
    quantity: int = 1
    price: int = 0


@dataclass(frozen=True)
class Order:
    """A historical order. Never mutated by the engine."""

    id: str
    created_at: datetime
    line_items: tuple[LineItem, ...] = ()

    @property
    def distinct_product_ids(self) -> list[str]:
        """Product ids in first-seen order, duplicates collapsed."""
        seen: dict[str, None] = {}
        for item in self.line_items:
            if item.product_id:
                seen.setdefault(item.product_id, None)
        return list(seen)


@dataclass(frozen=True)
class ProductSnapshot:
    """Catalog view of a product at request time."""

    id: str
    title: str = ""
    handle: str = ""
    price: int = 0
    available: bool = True
    image: str | None = None
    variant_id: str | None = None
    categories: tuple[str, ...] = ()
    is_subscription_only: bool = False


@dataclass(frozen=True)
class TrackingCounts:
    impressions: int = 0
    clicks: int = 0


@dataclass(frozen=True)
class PerformanceSnapshot:
    """Serving-side view of a Performance Record."""

    product_id: str
    confidence: float
    is_blacklisted: bool = False


@dataclass
class Recommendation:
    """A product in a served recommendation list."""

    id: str
    title: str
    handle: str
    price: int
    image: str | None = None
    variant_id: str | None = None
    score: float = 0.0

    @classmethod
    def from_snapshot(cls, product: ProductSnapshot, score: float = 0.0) -> "Recommendation":
        return cls(
            id=product.id,
            title=product.title,
            handle=product.handle,
            price=product.price,
            image=product.image,
            variant_id=product.variant_id,
            score=score,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "handle": self.handle,
            "image": self.image,
            "price": self.price,
            "variant_id": self.variant_id,
        }


class PersonalizationMode(str, Enum):
    BASIC = "basic"
    POPULAR = "popular"
    BALANCED = "balanced"
    AI_FIRST = "ai_first"


class ThresholdMode(str, Enum):
    SMART = "smart"
    PRICE = "price"


class FallbackReason(str, Enum):
    """Why a source tier produced fewer candidates than it could have."""

    ORDERS_UNAVAILABLE = "orders_unavailable"
    CATALOG_UNAVAILABLE = "catalog_unavailable"
    TRACKING_UNAVAILABLE = "tracking_unavailable"
    SIGNAL_UNAVAILABLE = "signal_unavailable"
    NO_ASSOCIATION_DATA = "no_association_data"
    NOT_CONFIGURED = "not_configured"


@dataclass
class TierResult:
    """Candidates produced by one source tier, plus why it fell short (if it did)."""

    candidates: list[Recommendation] = field(default_factory=list)
    fallback_reason: FallbackReason | None = None

    @property
    def ok(self) -> bool:
        return self.fallback_reason is None

    @classmethod
    def failed(cls, reason: FallbackReason) -> "TierResult":
        return cls(candidates=[], fallback_reason=reason)


@dataclass(frozen=True)
class PersistedBundle:
    """A bundle configured by the merchant (manual, collection or ML)."""

    id: str
    name: str
    type: str
    discount_type: str = "percentage"
    discount_value: float = 0.0
    product_ids: tuple[str, ...] = ()
    collection_ids: tuple[str, ...] = ()
    assignment_type: str = "specific"
    assigned_products: tuple[str, ...] = ()
    description: str = ""

    def targets(self, product_id: str) -> bool:
        if self.assignment_type == "all":
            return True
        return product_id in self.assigned_products or product_id in self.product_ids


@dataclass(frozen=True)
class DiscountConfig:
    discount_type: str = "percentage"
    discount_value: float = 0.0


@dataclass(frozen=True)
class TrackingEvent:
    """A storefront tracking event read back by the learning job."""

    event: str
    product_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass(frozen=True)
class Attribution:
    """Revenue attributed to a recommended product on a completed order."""

    product_id: str
    order_id: str = ""
    revenue: float = 0.0
