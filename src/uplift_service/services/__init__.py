"""Business logic services."""

from uplift_service.services.bundles import BundleComposer
from uplift_service.services.learning import LearningJob
from uplift_service.services.recommendation_engine import RecommendationEngine

__all__ = [
    "BundleComposer",
    "LearningJob",
    "RecommendationEngine",
]
