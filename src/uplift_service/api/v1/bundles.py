"""Product-page bundle endpoints."""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from uplift_service.api.deps import get_engine
from uplift_service.exceptions import RateOrQuotaExceeded
from uplift_service.services.recommendation_engine import RecommendationEngine

logger = structlog.get_logger()

router = APIRouter()


class BundleProduct(BaseModel):
    id: str
    title: str
    handle: str
    price: int
    image: str | None = None
    variant_id: str | None = None


class BundleResponseItem(BaseModel):
    id: str
    name: str
    description: str = ""
    products: list[BundleProduct]
    regular_total: int
    bundle_price: int
    discount_percent: int
    discount_type: str
    savings_amount: int
    source: str


class BundleResponse(BaseModel):
    bundles: list[BundleResponseItem]
    currency: str
    reason: str | None = None


@router.get("", response_model=BundleResponse, response_model_exclude_none=True)
async def get_bundles(
    shop: Annotated[str, Query(description="Shop domain")] = "",
    context: Annotated[str | None, Query(description="Only 'product' is supported")] = None,
    product_id: Annotated[str | None, Query(description="Anchor product id")] = None,
    engine: RecommendationEngine = Depends(get_engine),
) -> Any:
    """Get bundles anchored on a product page product."""
    try:
        result = await engine.get_bundles(shop, context, product_id)
    except RateOrQuotaExceeded as e:
        logger.info("Order limit reached", shop=shop)
        return JSONResponse(
            status_code=e.status_code,
            content={"bundles": [], "limit_reached": True, "message": e.message},
        )

    payload: dict[str, Any] = {
        "bundles": [b.to_dict() for b in result.bundles],
        "currency": result.currency,
    }
    if result.reason:
        payload["reason"] = result.reason
    return payload
