"""Deterministic A/B variant assignment for recommendation experiments."""

import hashlib
from dataclasses import dataclass, field
from typing import Any

import structlog

from uplift_service.services.entities import PersonalizationMode

logger = structlog.get_logger()

SUPPORTED_TEST_TYPES = ("ml_algorithm", "recommendation_copy")


@dataclass(frozen=True)
class Variant:
    id: str
    traffic_percentage: float = 0.0
    config: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Experiment:
    id: str
    test_type: str
    status: str = "running"
    attribution: str = "session"
    active_variant_id: str | None = None
    variants: tuple[Variant, ...] = ()


@dataclass(frozen=True)
class ExperimentOverride:
    """Per-request overrides of the shop's ML settings."""

    experiment_id: str
    variant_id: str
    ml_enabled: bool | None = None
    personalization_mode: PersonalizationMode | None = None


def hash_to_unit(key: str) -> float:
    """Map a string to a stable float in [0, 1)."""
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") / 2**64


def assign_variant(experiment: Experiment, unit_id: str) -> Variant | None:
    """
    Pick a variant for ``unit_id``.

    Completed experiments always serve their winning variant. Running ones
    bucket the unit by cumulative traffic share; if no variant has positive
    traffic, every variant gets an equal share.
    """
    variants = list(experiment.variants)
    if not variants:
        return None

    if experiment.status == "completed":
        for variant in variants:
            if variant.id == experiment.active_variant_id:
                return variant
        return None

    weights = [max(0.0, v.traffic_percentage) for v in variants]
    total = sum(weights)
    if total <= 0:
        weights = [1.0] * len(variants)
        total = float(len(variants))

    point = hash_to_unit(f"{experiment.id}:{unit_id}:{experiment.attribution}")
    cumulative = 0.0
    for variant, weight in zip(variants, weights):
        cumulative += weight / total
        if point < cumulative:
            return variant
    return variants[-1]


def _parse_mode(value: Any) -> PersonalizationMode | None:
    if value is None:
        return None
    try:
        return PersonalizationMode(str(value).lower())
    except ValueError:
        return None


def resolve_override(experiment: Experiment | None, unit_id: str | None) -> ExperimentOverride | None:
    """Translate an experiment assignment into ML setting overrides."""
    if experiment is None or not unit_id:
        return None
    if experiment.test_type not in SUPPORTED_TEST_TYPES:
        return None
    if experiment.status not in ("running", "completed"):
        return None

    variant = assign_variant(experiment, unit_id)
    if variant is None:
        return None

    ml_enabled = variant.config.get("ml_enabled", variant.config.get("mlEnabled"))
    mode = variant.config.get("personalization_mode", variant.config.get("personalizationMode"))

    override = ExperimentOverride(
        experiment_id=experiment.id,
        variant_id=variant.id,
        ml_enabled=bool(ml_enabled) if ml_enabled is not None else None,
        personalization_mode=_parse_mode(mode),
    )
    logger.debug(
        "Experiment variant assigned",
        experiment_id=experiment.id,
        variant_id=variant.id,
        personalization_mode=override.personalization_mode,
    )
    return override
