"""Unit tests for source blending."""

from uplift_service.services.blending import blend, is_cold_start, sort_by_price_proximity
from uplift_service.services.entities import (
    FallbackReason,
    PersonalizationMode,
    Recommendation,
    TierResult,
)


def recs(*ids: str, price: int = 1000) -> list[Recommendation]:
    return [Recommendation(id=pid, title=pid, handle=pid, price=price) for pid in ids]


def tier(*ids: str) -> TierResult:
    return TierResult(candidates=recs(*ids))


def ids(result) -> list[str]:
    return [r.id for r in result.recommendations]


def test_cold_start_threshold() -> None:
    assert is_cold_start(49)
    assert not is_cold_start(50)


def test_manual_first_then_statistical() -> None:
    result = blend(
        limit=4,
        manual=tier("m1", "m2"),
        statistical=tier("s1", "s2", "s3"),
        order_count=100,
    )
    assert ids(result) == ["m1", "m2", "s1", "s2"]
    assert not result.cold_start


def test_cold_start_splits_trending_and_statistical() -> None:
    result = blend(
        limit=6,
        manual=TierResult(),
        statistical=tier("s1", "s2", "s3", "s4", "s5", "s6"),
        trending=tier("t1", "t2", "t3", "t4", "t5", "t6"),
        order_count=10,
    )
    # ceil(6 * 0.7) = 5 trending, floor(6 * 0.3) = 1 statistical
    assert ids(result) == ["t1", "t2", "t3", "t4", "t5", "s1"]
    assert result.cold_start


def test_cold_start_backfills_from_trending() -> None:
    result = blend(
        limit=4,
        manual=TierResult(),
        statistical=TierResult.failed(FallbackReason.NO_ASSOCIATION_DATA),
        trending=tier("t1", "t2", "t3", "t4", "t5"),
        order_count=0,
    )
    assert ids(result) == ["t1", "t2", "t3", "t4"]
    assert result.fallback_reasons == [FallbackReason.NO_ASSOCIATION_DATA]


def test_ai_first_gives_signal_seventy_percent() -> None:
    signal = tier(*[f"g{i}" for i in range(1, 11)])
    stats = tier(*[f"s{i}" for i in range(1, 11)])

    result = blend(
        limit=10,
        manual=TierResult(),
        statistical=stats,
        secondary=signal,
        mode=PersonalizationMode.AI_FIRST,
        order_count=100,
    )

    assert ids(result) == ["g1", "g2", "g3", "g4", "g5", "g6", "g7", "s1", "s2", "s3"]


def test_balanced_interleaves() -> None:
    result = blend(
        limit=5,
        manual=TierResult(),
        statistical=tier("s1", "s2", "s3", "s4", "s5"),
        secondary=tier("g1", "g2", "g3", "g4", "g5"),
        mode=PersonalizationMode.BALANCED,
        order_count=100,
    )
    assert ids(result) == ["s1", "g1", "s2", "g2", "s3"]


def test_popular_puts_signal_first() -> None:
    result = blend(
        limit=4,
        manual=TierResult(),
        statistical=tier("s1", "s2", "s3", "s4"),
        secondary=tier("g1", "g2"),
        mode=PersonalizationMode.POPULAR,
        order_count=100,
    )
    assert ids(result) == ["g1", "g2", "s1", "s2"]


def test_basic_ignores_signal_until_statistical_runs_out() -> None:
    result = blend(
        limit=4,
        manual=TierResult(),
        statistical=tier("s1", "s2"),
        secondary=tier("g1", "g2", "g3"),
        mode=PersonalizationMode.BASIC,
        order_count=100,
    )
    assert ids(result) == ["s1", "s2", "g1", "g2"]


def test_failed_signal_falls_back_to_statistical() -> None:
    result = blend(
        limit=3,
        manual=TierResult(),
        statistical=tier("s1", "s2", "s3"),
        secondary=TierResult.failed(FallbackReason.SIGNAL_UNAVAILABLE),
        mode=PersonalizationMode.AI_FIRST,
        order_count=100,
    )
    assert ids(result) == ["s1", "s2", "s3"]
    assert FallbackReason.SIGNAL_UNAVAILABLE in result.fallback_reasons


def test_anchors_and_duplicates_never_served() -> None:
    result = blend(
        limit=6,
        manual=tier("x", "a"),
        statistical=tier("a", "x", "s1"),
        anchors=["a"],
        order_count=100,
    )
    assert ids(result) == ["x", "s1"]


def test_everything_failed_is_empty_not_error() -> None:
    result = blend(
        limit=6,
        manual=TierResult.failed(FallbackReason.CATALOG_UNAVAILABLE),
        statistical=TierResult.failed(FallbackReason.ORDERS_UNAVAILABLE),
        trending=TierResult.failed(FallbackReason.CATALOG_UNAVAILABLE),
        order_count=0,
    )
    assert result.recommendations == []
    assert len(result.fallback_reasons) == 3


def test_price_proximity_sorting() -> None:
    items = [
        Recommendation(id="a", title="a", handle="a", price=500),
        Recommendation(id="b", title="b", handle="b", price=1100),
        Recommendation(id="c", title="c", handle="c", price=3000),
    ]
    assert [r.id for r in sort_by_price_proximity(items, 1000)] == ["b", "a", "c"]

    result = blend(
        limit=3,
        manual=TierResult(),
        statistical=TierResult(candidates=items),
        order_count=100,
        need=1000,
        price_proximity=True,
    )
    assert ids(result) == ["b", "a", "c"]


def test_limit_never_exceeded() -> None:
    for limit in range(1, 13):
        result = blend(
            limit=limit,
            manual=tier(*[f"m{i}" for i in range(3)]),
            statistical=tier(*[f"s{i}" for i in range(20)]),
            trending=tier(*[f"t{i}" for i in range(20)]),
            order_count=0,
        )
        assert len(result.recommendations) <= limit
