"""Unit tests for the association miner."""

import math

import pytest

from conftest import NOW, make_order
from uplift_service.services.association import build_association_graph, decay_weight


class TestDecayWeight:
    def test_fresh_order_has_full_weight(self) -> None:
        assert decay_weight(0) == 1.0

    def test_half_life_halves_weight(self) -> None:
        assert decay_weight(60) == pytest.approx(0.5)
        assert decay_weight(120) == pytest.approx(0.25)

    def test_strictly_decreasing_in_age(self) -> None:
        weights = [decay_weight(age) for age in (0, 1, 7, 30, 59, 60, 89)]
        assert all(a > b for a, b in zip(weights, weights[1:]))

    def test_negative_age_counts_as_zero(self) -> None:
        assert decay_weight(-5) == 1.0

    def test_custom_half_life(self) -> None:
        assert decay_weight(10, half_life_days=10) == pytest.approx(0.5)


class TestBuildAssociationGraph:
    def test_symmetric_co_occurrence(self) -> None:
        graph = build_association_graph([make_order("o1", "a", "b", "c")], now=NOW)

        assert graph.neighbors("a") == {"b": 1.0, "c": 1.0}
        assert graph.neighbors("b")["a"] == graph.neighbors("a")["b"]
        assert graph.appearances("a") == 1.0
        assert graph.multi_item_order_count == 1

    def test_single_item_orders_count_but_add_no_pairs(self) -> None:
        graph = build_association_graph(
            [make_order("o1", "a"), make_order("o2", "a", "b")],
            now=NOW,
        )

        assert graph.order_count == 2
        assert graph.multi_item_order_count == 1
        assert graph.appearances("a") == 1.0

    def test_duplicate_lines_count_once(self) -> None:
        graph = build_association_graph([make_order("o1", "a", "a", "b")], now=NOW)

        assert graph.appearances("a") == 1.0
        assert graph.neighbors("a") == {"b": 1.0}

    def test_younger_order_contributes_more(self) -> None:
        graph = build_association_graph(
            [make_order("new", "a", "b", days_ago=1), make_order("old", "a", "c", days_ago=40)],
            now=NOW,
        )

        assert graph.neighbors("a")["b"] > graph.neighbors("a")["c"]
        assert graph.neighbors("a")["c"] == pytest.approx(math.exp(-math.log(2) * 40 / 60))

    def test_orders_outside_lookback_are_ignored(self) -> None:
        graph = build_association_graph(
            [make_order("old", "a", "b", days_ago=91), make_order("new", "a", "c")],
            now=NOW,
            lookback_days=90,
        )

        assert graph.order_count == 1
        assert "b" not in graph

    def test_empty_history(self) -> None:
        graph = build_association_graph([], now=NOW)

        assert graph.is_empty
        assert graph.total_mass == 0
        assert graph.order_count == 0
