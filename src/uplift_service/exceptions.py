"""Exception types for the recommendation and bundling engine.

Only ``RateOrQuotaExceeded`` is ever surfaced to the storefront. Everything
else is caught inside the serving path and turned into a fallback tier.
"""

from typing import Any


class UpliftError(Exception):
    """Base exception for engine errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class UpstreamUnavailable(UpliftError):
    """A collaborator (catalog, order history, tracking) failed or timed out."""

    def __init__(self, service: str, error: Exception | str | None = None):
        reason = str(error) if error is not None else "unavailable"
        super().__init__(
            message=f"{service} unavailable: {reason}",
            status_code=503,
            details={
                "service": service,
                "error": reason,
                "error_type": type(error).__name__ if isinstance(error, Exception) else None,
            },
        )
        self.service = service


class InvalidInput(UpliftError):
    """Malformed request input that could not be normalized."""

    def __init__(self, field: str, value: Any):
        super().__init__(
            message=f"Invalid value for '{field}': {value!r}",
            status_code=400,
            details={"field": field, "value": value},
        )


class ConfigurationMissing(UpliftError):
    """A feature has no configuration and should behave as disabled."""

    def __init__(self, feature: str):
        super().__init__(
            message=f"No configuration for '{feature}'",
            status_code=200,
            details={"feature": feature},
        )


class RateOrQuotaExceeded(UpliftError):
    """The shop reached its subscription order limit."""

    def __init__(self, shop: str):
        super().__init__(
            message="Order limit reached. Please upgrade your plan to continue.",
            status_code=403,
            details={"shop": shop},
        )
        self.shop = shop


class DataIntegrityViolation(UpliftError):
    """A score or weight left its valid domain (negative or non-finite)."""

    def __init__(self, product_id: str, value: float):
        super().__init__(
            message=f"Non-finite or negative score for product {product_id}: {value}",
            status_code=500,
            details={"product_id": product_id, "value": value},
        )
