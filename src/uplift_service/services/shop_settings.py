"""Typed per-shop settings, validated once at the boundary."""

from decimal import InvalidOperation
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from shared.constants import DEFAULT_RECOMMENDATION_LIMIT, MAX_RECOMMENDATION_LIMIT
from uplift_service.services.entities import PersonalizationMode, ThresholdMode, round_half_up

ComplementMode = Literal["automatic", "manual", "hybrid"]
PrivacyLevel = Literal["basic", "standard", "advanced"]

_COMPLEMENT_MODES = ("automatic", "manual", "hybrid")
_PRIVACY_LEVELS = ("basic", "standard", "advanced")


class ShopSettings(BaseModel):
    """
    Feature flags and thresholds for one shop.

    Accepts snake_case column names or the camelCase keys used by the admin
    app. Unknown enum values fall back to their defaults instead of failing
    validation, since a stale settings row must never break serving.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    enable_recommendations: bool = False
    max_recommendations: int = Field(default=DEFAULT_RECOMMENDATION_LIMIT, ge=1, le=MAX_RECOMMENDATION_LIMIT)
    free_shipping_threshold: int = Field(default=0, ge=0)
    hide_recommendations_after_threshold: bool = False
    enable_threshold_based_suggestions: bool = False
    threshold_suggestion_mode: ThresholdMode = ThresholdMode.SMART
    enable_manual_recommendations: bool = False
    complement_detection_mode: ComplementMode = "automatic"
    manual_recommendation_products: list[str] = Field(default_factory=list)
    enable_ml_recommendations: bool = False
    ml_personalization_mode: PersonalizationMode = PersonalizationMode.BASIC
    ml_privacy_level: PrivacyLevel = "basic"
    enable_behavior_tracking: bool = False
    bundles_on_product_pages: bool = True
    enable_smart_bundles: bool = False

    @field_validator("max_recommendations", mode="before")
    @classmethod
    def clamp_max_recommendations(cls, v: Any) -> int:
        try:
            value = int(v)
        except (TypeError, ValueError):
            return DEFAULT_RECOMMENDATION_LIMIT
        return max(1, min(MAX_RECOMMENDATION_LIMIT, value))

    @field_validator("free_shipping_threshold", mode="before")
    @classmethod
    def parse_threshold(cls, v: Any) -> int:
        try:
            return max(0, round_half_up(v))
        except (TypeError, ValueError, InvalidOperation):
            return 0

    @field_validator("threshold_suggestion_mode", mode="before")
    @classmethod
    def normalize_threshold_mode(cls, v: Any) -> ThresholdMode:
        try:
            return ThresholdMode(str(v).lower())
        except ValueError:
            return ThresholdMode.SMART

    @field_validator("ml_personalization_mode", mode="before")
    @classmethod
    def normalize_personalization_mode(cls, v: Any) -> PersonalizationMode:
        try:
            return PersonalizationMode(str(v).lower())
        except ValueError:
            return PersonalizationMode.BASIC

    @field_validator("complement_detection_mode", mode="before")
    @classmethod
    def normalize_complement_mode(cls, v: Any) -> str:
        value = str(v).lower() if v is not None else ""
        return value if value in _COMPLEMENT_MODES else "automatic"

    @field_validator("ml_privacy_level", mode="before")
    @classmethod
    def normalize_privacy_level(cls, v: Any) -> str:
        value = str(v).lower() if v is not None else ""
        return value if value in _PRIVACY_LEVELS else "basic"

    @field_validator("manual_recommendation_products", mode="before")
    @classmethod
    def parse_manual_products(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        ids: list[str] = []
        for item in v:
            pid = str(item).strip()
            if pid and pid not in ids:
                ids.append(pid)
        return ids

    @property
    def threshold_active(self) -> bool:
        return self.enable_threshold_based_suggestions and self.free_shipping_threshold > 0

    @property
    def manual_enabled(self) -> bool:
        return self.enable_manual_recommendations or self.complement_detection_mode in ("manual", "hybrid")
