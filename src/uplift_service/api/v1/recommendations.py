"""Recommendation API endpoints."""

from decimal import InvalidOperation
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from uplift_service.api.deps import get_engine
from uplift_service.exceptions import RateOrQuotaExceeded
from uplift_service.services.entities import round_half_up
from uplift_service.services.recommendation_engine import RecommendationEngine, RecommendationRequest

logger = structlog.get_logger()

router = APIRouter()


class RecommendedProduct(BaseModel):
    """A recommended product. Prices are in minor units."""

    id: str
    title: str
    handle: str
    image: str | None = None
    price: int
    variant_id: str | None = None


class RecommendationResponse(BaseModel):
    """Response containing recommendations."""

    recommendations: list[RecommendedProduct]
    limit_reached: bool = False
    reason: str | None = Field(None, description="Why the list is empty or degraded")
    ml_data: dict[str, Any] | None = None


def parse_cart(cart: str | None) -> list[str]:
    if not cart:
        return []
    return [pid.strip() for pid in cart.split(",") if pid.strip()]


def parse_subtotal(subtotal: str | None) -> int | None:
    """Cart subtotal in minor units; anything unparseable or negative is treated as unknown."""
    if subtotal is None or not subtotal.strip():
        return None
    try:
        value = round_half_up(subtotal.strip())
    except InvalidOperation:
        return None
    return value if value >= 0 else None


@router.get("", response_model=RecommendationResponse, response_model_exclude_none=True)
async def get_recommendations(
    response: Response,
    shop: Annotated[str, Query(min_length=1, description="Shop domain")],
    product_id: Annotated[str | None, Query(description="Product page anchor")] = None,
    cart: Annotated[str | None, Query(description="Comma-separated cart product ids")] = None,
    limit: Annotated[str | None, Query(description="Requested count, clamped to [1, 12]")] = None,
    subtotal: Annotated[str | None, Query(description="Cart subtotal in minor units")] = None,
    session_id: str | None = None,
    customer_id: str | None = None,
    engine: RecommendationEngine = Depends(get_engine),
) -> Any:
    """
    Get cart or product-page recommendations.

    Never fails because of an upstream outage; the list degrades instead.
    Returns 403 only when the shop's plan order limit is reached.
    """
    request = RecommendationRequest(
        shop=shop,
        product_id=product_id,
        cart_ids=parse_cart(cart),
        limit=limit,
        subtotal=parse_subtotal(subtotal),
        session_id=session_id,
        customer_id=customer_id,
    )
    try:
        payload, cache_hit = await engine.get_recommendations(request)
    except RateOrQuotaExceeded as e:
        logger.info("Order limit reached", shop=shop)
        return JSONResponse(
            status_code=e.status_code,
            content={"recommendations": [], "limit_reached": True, "message": e.message},
        )

    response.headers["X-Recs-Cache"] = "HIT" if cache_hit else "MISS"
    return payload
