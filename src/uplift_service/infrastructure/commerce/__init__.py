"""Commerce platform REST client (catalog, orders, store info)."""

import asyncio
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
import structlog

from uplift_service.config import get_settings
from uplift_service.exceptions import UpstreamUnavailable
from uplift_service.services.entities import LineItem, Order, ProductSnapshot, round_half_up

logger = structlog.get_logger()

# Concurrent per-order line item requests
ORDER_PRODUCTS_CONCURRENCY = 10
# v2 orders endpoint page size cap
ORDERS_PAGE_LIMIT = 250

_client: "CommerceApiClient | None" = None


def to_minor_units(value: Any) -> int:
    try:
        return round_half_up(Decimal(str(value)) * 100)
    except (TypeError, ValueError, InvalidOperation):
        return 0


def parse_product(data: dict[str, Any]) -> ProductSnapshot:
    """Map a catalog product (with variants and images included) to a snapshot."""
    variants = data.get("variants") or []
    purchasable = [v for v in variants if not v.get("purchasing_disabled")]
    variant = purchasable[0] if purchasable else (variants[0] if variants else None)

    if variant is not None:
        price = to_minor_units(variant.get("calculated_price") or variant.get("price") or data.get("price"))
        variant_id = str(variant.get("id"))
    else:
        price = to_minor_units(data.get("calculated_price") or data.get("price"))
        variant_id = None

    images = data.get("images") or []
    image = images[0].get("url_standard") if images else None
    handle = ((data.get("custom_url") or {}).get("url") or "").strip("/")
    available = bool(purchasable) or (not variants and data.get("availability") != "disabled")

    return ProductSnapshot(
        id=str(data.get("id")),
        title=data.get("name") or "",
        handle=handle,
        price=price,
        available=available and bool(data.get("is_visible", True)),
        image=image,
        variant_id=variant_id,
        categories=tuple(str(c) for c in data.get("categories") or []),
    )


def parse_order_date(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return datetime.fromisoformat(value)


class CommerceApiClient:
    """
    Async client for the store's REST API.

    Serves as both the catalog and the order history collaborator. Any
    transport error, timeout or non-2xx response raises ``UpstreamUnavailable``.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={
                "X-Auth-Token": token,
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
        )

    async def close(self) -> None:
        if not self._client.is_closed:
            await self._client.aclose()

    async def _get(self, shop: str, version: str, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}/{shop}/{version}{path}"
        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.warning("Commerce API timeout", shop=shop, path=path)
            raise UpstreamUnavailable("commerce_api", e) from e
        except httpx.HTTPStatusError as e:
            logger.warning("Commerce API error", shop=shop, path=path, status_code=e.response.status_code)
            raise UpstreamUnavailable("commerce_api", e) from e
        except httpx.HTTPError as e:
            logger.warning("Commerce API request failed", shop=shop, path=path, error=str(e))
            raise UpstreamUnavailable("commerce_api", e) from e

        # v2 answers 204 with no body for empty collections
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def _products(self, shop: str, params: dict[str, Any]) -> list[ProductSnapshot]:
        params = {"include": "images,variants", "is_visible": "true", **params}
        body = await self._get(shop, "v3", "/catalog/products", params)
        return [parse_product(p) for p in (body or {}).get("data", [])]

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    async def get_products_by_ids(self, shop: str, ids: Sequence[str]) -> list[ProductSnapshot]:
        numeric = [pid for pid in dict.fromkeys(ids) if str(pid).isdigit()]
        if not numeric:
            return []
        return await self._products(shop, {"id:in": ",".join(numeric), "limit": len(numeric)})

    async def list_trending_products(self, shop: str, limit: int) -> list[ProductSnapshot]:
        return await self._products(shop, {"sort": "total_sold", "direction": "desc", "limit": limit})

    async def list_catalog_products(
        self, shop: str, limit: int, category: str | None = None
    ) -> list[ProductSnapshot]:
        params: dict[str, Any] = {"limit": limit}
        if category:
            params["categories:in"] = category
        return await self._products(shop, params)

    async def get_currency(self, shop: str) -> str:
        body = await self._get(shop, "v2", "/store")
        return (body or {}).get("currency") or "USD"

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    async def fetch_recent_orders(self, shop: str, max_count: int, max_age_days: int) -> list[Order]:
        """Most recent orders (newest first) with their line items."""
        since = datetime.now(timezone.utc) - timedelta(days=max_age_days)
        orders: list[dict[str, Any]] = []
        page = 1
        while len(orders) < max_count:
            page_size = min(ORDERS_PAGE_LIMIT, max_count - len(orders))
            batch = await self._get(
                shop,
                "v2",
                "/orders",
                {
                    "limit": page_size,
                    "page": page,
                    "sort": "date_created:desc",
                    "min_date_created": since.strftime("%a, %d %b %Y %H:%M:%S +0000"),
                },
            )
            batch = batch or []
            orders.extend(batch)
            if len(batch) < page_size:
                break
            page += 1

        semaphore = asyncio.Semaphore(ORDER_PRODUCTS_CONCURRENCY)

        async def with_items(order: dict[str, Any]) -> Order:
            async with semaphore:
                items = await self._get(shop, "v2", f"/orders/{order['id']}/products")
            return Order(
                id=str(order["id"]),
                created_at=parse_order_date(order.get("date_created")),
                line_items=tuple(
                    LineItem(
                        product_id=str(item.get("product_id")),
                        quantity=int(item.get("quantity") or 1),
                        price=to_minor_units(item.get("base_price")),
                    )
                    for item in items or []
                    if item.get("product_id")
                ),
            )

        result = await asyncio.gather(*(with_items(o) for o in orders[:max_count]))
        logger.debug("Fetched recent orders", shop=shop, count=len(result))
        return list(result)


def get_commerce_client() -> CommerceApiClient:
    """Get or create the process-wide commerce API client."""
    global _client
    if _client is None:
        settings = get_settings()
        _client = CommerceApiClient(
            base_url=settings.commerce_api_base_url,
            token=settings.commerce_api_token,
            timeout=settings.commerce_api_timeout,
        )
    return _client


async def close_commerce_client() -> None:
    """Close the commerce API client on shutdown."""
    global _client
    if _client is not None:
        await _client.close()
        _client = None
