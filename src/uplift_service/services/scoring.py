"""Candidate scoring.

Turns an association graph into ranked complement candidates using a blend of
capped lift and popularity, then re-ranks with smoothed click-through rates and
the performance records written by the daily learning job.
"""

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace

import structlog

from shared.constants import (
    BASELINE_CTR,
    CTR_ALPHA,
    CTR_BETA,
    CTR_MULTIPLIER_MAX,
    CTR_MULTIPLIER_MIN,
    CTR_WEIGHT,
    HIGH_CONFIDENCE,
    HIGH_CONFIDENCE_BOOST,
    LIFT_CAP,
    LIFT_WEIGHT,
    LOW_CONFIDENCE,
    LOW_CONFIDENCE_PENALTY,
    POPULARITY_MASS_BAND,
    POPULARITY_WEIGHT,
)
from uplift_service.exceptions import DataIntegrityViolation
from uplift_service.services.association import AssociationGraph
from uplift_service.services.entities import PerformanceSnapshot, Recommendation, TrackingCounts

logger = structlog.get_logger()

# Floor for an anchor's appearance mass when computing conditional confidence
MIN_ANCHOR_MASS = 1e-6


@dataclass(frozen=True)
class CandidateScore:
    """A scored complement candidate. Created per request, never persisted."""

    product_id: str
    base_score: float
    lift: float = 0.0
    lift_norm: float = 0.0
    popularity: float = 0.0
    ctr_multiplier: float = 1.0

    @property
    def final_score(self) -> float:
        return self.base_score * self.ctr_multiplier


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _check_finite(product_id: str, value: float) -> float:
    if not math.isfinite(value) or value < 0:
        raise DataIntegrityViolation(product_id, value)
    return value


def score_pair(graph: AssociationGraph, anchor_id: str, candidate_id: str) -> CandidateScore:
    """Score one (anchor, candidate) pair against the graph."""
    total_mass = graph.total_mass
    anchor_mass = max(MIN_ANCHOR_MASS, graph.appearances(anchor_id))
    candidate_mass = graph.appearances(candidate_id)
    co_weight = graph.neighbors(anchor_id).get(candidate_id, 0.0)

    confidence = co_weight / anchor_mass
    prob_b = candidate_mass / total_mass if total_mass > 0 else 0.0
    lift = confidence / prob_b if prob_b > 0 else 0.0
    lift_norm = min(lift, LIFT_CAP) / LIFT_CAP

    band = total_mass * POPULARITY_MASS_BAND
    pop_norm = min(1.0, candidate_mass / band) if band > 0 else 0.0

    base = LIFT_WEIGHT * lift_norm + POPULARITY_WEIGHT * pop_norm
    _check_finite(candidate_id, base)

    return CandidateScore(
        product_id=candidate_id,
        base_score=_clamp(base, 0.0, 1.0),
        lift=lift,
        lift_norm=_clamp(lift_norm, 0.0, 1.0),
        popularity=_clamp(pop_norm, 0.0, 1.0),
    )


def score_candidates(
    graph: AssociationGraph,
    anchors: Sequence[str],
    exclude: Iterable[str] = (),
) -> list[CandidateScore]:
    """
    Score every product that co-occurs with at least one anchor.

    A candidate keeps its best score across anchors (ties go to the higher
    lift). Anchors and excluded ids are never candidates. Candidates whose
    score is not a finite non-negative number are dropped.

    Returns:
        Candidates sorted by base score, descending, ties in discovery order
    """
    blocked = set(anchors) | set(exclude)
    best: dict[str, CandidateScore] = {}

    for anchor in anchors:
        for candidate_id in graph.neighbors(anchor):
            if candidate_id in blocked:
                continue
            try:
                scored = score_pair(graph, anchor, candidate_id)
            except DataIntegrityViolation as e:
                logger.warning(
                    "Dropping candidate with invalid score",
                    product_id=candidate_id,
                    anchor=anchor,
                    error=e.message,
                )
                continue

            current = best.get(candidate_id)
            if current is None:
                best[candidate_id] = scored
            elif scored.base_score > current.base_score or (
                scored.base_score == current.base_score and scored.lift > current.lift
            ):
                best[candidate_id] = scored

    return sorted(best.values(), key=lambda c: c.base_score, reverse=True)


def ctr_from_counts(counts: TrackingCounts | None) -> float:
    """Laplace-smoothed CTR, or the baseline when no tracking data exists."""
    if counts is None or (counts.impressions <= 0 and counts.clicks <= 0):
        return BASELINE_CTR
    impressions = max(0, counts.impressions)
    clicks = max(0, counts.clicks)
    return (clicks + CTR_ALPHA) / (impressions + CTR_BETA)


def ctr_multiplier(ctr: float) -> float:
    return _clamp(1 + CTR_WEIGHT * (ctr - BASELINE_CTR), CTR_MULTIPLIER_MIN, CTR_MULTIPLIER_MAX)


def apply_ctr(
    candidates: Sequence[CandidateScore],
    counts: Mapping[str, TrackingCounts],
) -> list[CandidateScore]:
    """Re-rank candidates by ``base_score * ctr_multiplier`` (stable)."""
    reranked = [
        replace(c, ctr_multiplier=ctr_multiplier(ctr_from_counts(counts.get(c.product_id))))
        for c in candidates
    ]
    return sorted(reranked, key=lambda c: c.final_score, reverse=True)


def performance_multiplier(record: PerformanceSnapshot | None) -> float:
    if record is None:
        return 1.0
    if record.confidence > HIGH_CONFIDENCE:
        return HIGH_CONFIDENCE_BOOST
    if record.confidence < LOW_CONFIDENCE:
        return LOW_CONFIDENCE_PENALTY
    return 1.0


def apply_performance(
    candidates: Sequence[Recommendation],
    records: Mapping[str, PerformanceSnapshot],
) -> list[Recommendation]:
    """
    Apply learned performance to a served list.

    Blacklisted products are removed; the rest have their score boosted or
    penalized by confidence and are re-sorted (stable). Products with no
    record keep their score.
    """
    if not records:
        return list(candidates)

    adjusted: list[Recommendation] = []
    removed = 0
    for rec in candidates:
        record = records.get(rec.id)
        if record is not None and record.is_blacklisted:
            removed += 1
            continue
        adjusted.append(replace(rec, score=rec.score * performance_multiplier(record)))

    if removed:
        logger.debug("Removed blacklisted candidates", count=removed)

    return sorted(adjusted, key=lambda r: r.score, reverse=True)
