"""Unit tests for typed shop settings."""

from uplift_service.services.entities import PersonalizationMode, ThresholdMode
from uplift_service.services.shop_settings import ShopSettings


def test_defaults() -> None:
    settings = ShopSettings()

    assert settings.enable_recommendations is False
    assert settings.max_recommendations == 6
    assert settings.threshold_suggestion_mode == ThresholdMode.SMART
    assert settings.ml_personalization_mode == PersonalizationMode.BASIC
    assert settings.bundles_on_product_pages is True
    assert settings.manual_recommendation_products == []


def test_accepts_camel_case_keys() -> None:
    settings = ShopSettings.model_validate(
        {
            "enableRecommendations": True,
            "maxRecommendations": 4,
            "freeShippingThreshold": "5000",
            "enableThresholdBasedSuggestions": True,
            "thresholdSuggestionMode": "PRICE",
            "mlPersonalizationMode": "ai_first",
        }
    )

    assert settings.enable_recommendations
    assert settings.max_recommendations == 4
    assert settings.free_shipping_threshold == 5000
    assert settings.threshold_suggestion_mode == ThresholdMode.PRICE
    assert settings.ml_personalization_mode == PersonalizationMode.AI_FIRST
    assert settings.threshold_active


def test_unknown_values_fall_back_to_defaults() -> None:
    settings = ShopSettings.model_validate(
        {
            "threshold_suggestion_mode": "aggressive",
            "ml_personalization_mode": "quantum",
            "complement_detection_mode": None,
            "ml_privacy_level": "total",
            "max_recommendations": "lots",
            "free_shipping_threshold": "n/a",
        }
    )

    assert settings.threshold_suggestion_mode == ThresholdMode.SMART
    assert settings.ml_personalization_mode == PersonalizationMode.BASIC
    assert settings.complement_detection_mode == "automatic"
    assert settings.ml_privacy_level == "basic"
    assert settings.max_recommendations == 6
    assert settings.free_shipping_threshold == 0


def test_max_recommendations_clamped() -> None:
    assert ShopSettings(max_recommendations=40).max_recommendations == 12
    assert ShopSettings(max_recommendations=0).max_recommendations == 1


def test_manual_products_parsed_from_csv() -> None:
    settings = ShopSettings(manual_recommendation_products=" 12, 7,,12 ,9")
    assert settings.manual_recommendation_products == ["12", "7", "9"]


def test_threshold_inactive_without_amount() -> None:
    settings = ShopSettings(enable_threshold_based_suggestions=True, free_shipping_threshold=0)
    assert not settings.threshold_active


def test_manual_enabled_by_flag_or_complement_mode() -> None:
    assert ShopSettings(enable_manual_recommendations=True).manual_enabled
    assert ShopSettings(complement_detection_mode="hybrid").manual_enabled
    assert not ShopSettings(complement_detection_mode="automatic").manual_enabled


def test_ignores_storage_columns() -> None:
    settings = ShopSettings.model_validate({"id": 4, "shop": "demo-store", "enable_recommendations": True})
    assert settings.enable_recommendations
