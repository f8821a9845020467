"""Tests for graph primitives used by the structural analysis."""

import pytest

from council.domain.analysis.graph_metrics import (
    analyze_graph,
    articulation_points,
    connected_components,
    is_in_bottom_percentile,
    is_in_top_percentile,
    longest_prerequisite_chain,
    percentile_threshold,
    signal_strength,
    top_n_count,
)
from council.domain.models.claim_graph import Edge


def _edge(a: str, b: str, edge_type: str = "prerequisite") -> Edge:
    return Edge.model_validate({"from": a, "to": b, "type": edge_type})


class TestPercentiles:
    def test_percentile_threshold(self) -> None:
        assert percentile_threshold([5, 1, 3, 2, 4], 0.5) == 3
        assert percentile_threshold([1, 2, 3], 1.0) == 3
        assert percentile_threshold([], 0.5) == 0.0

    def test_top_and_bottom(self) -> None:
        values = [0.1, 0.2, 0.3, 0.4, 0.9]
        assert is_in_top_percentile(0.9, values, 0.2)
        assert not is_in_top_percentile(0.3, values, 0.2)
        assert is_in_bottom_percentile(0.1, values, 0.2)

    def test_top_n_count_never_below_one(self) -> None:
        assert top_n_count(4, 0.3) == 2
        assert top_n_count(10, 0.3) == 3
        assert top_n_count(0, 0.3) == 1


class TestStructure:
    def test_connected_components(self) -> None:
        components = connected_components(["a", "b", "c"], [_edge("a", "b", "supports")])
        assert components == [["a", "b"], ["c"]]

    def test_longest_chain_follows_prerequisites_only(self) -> None:
        edges = [_edge("a", "b"), _edge("b", "c"), _edge("c", "d", "supports")]
        assert longest_prerequisite_chain(["a", "b", "c", "d"], edges) == ["a", "b", "c"]

    def test_longest_chain_terminates_on_cycle(self) -> None:
        edges = [_edge("a", "b"), _edge("b", "a")]
        assert longest_prerequisite_chain(["a", "b"], edges) == ["a", "b"]

    def test_articulation_points_of_path(self) -> None:
        edges = [_edge("a", "b"), _edge("b", "c")]
        assert articulation_points(["a", "b", "c"], edges) == ["b"]

    def test_no_articulation_points_in_triangle(self) -> None:
        edges = [_edge("a", "b"), _edge("b", "c"), _edge("c", "a")]
        assert articulation_points(["a", "b", "c"], edges) == []


class TestSignalStrength:
    def test_dense_even_full_coverage(self) -> None:
        value = signal_strength(2, 3, 2, [[1, 2], [1, 2]])
        assert value == pytest.approx(0.7)

    def test_empty(self) -> None:
        assert signal_strength(0, 0, 0, []) == 0.0


class TestAnalyzeGraph:
    def test_hub_detected(self) -> None:
        ids = ["a", "b", "c", "d"]
        edges = [_edge("a", "b", "supports"), _edge("a", "c", "supports"), _edge("a", "d", "supports")]

        analysis = analyze_graph(ids, edges, {cid: 0.5 for cid in ids}, set())

        assert analysis.hub_claim == "a"
        assert analysis.hub_dominance == 10.0
        assert analysis.component_count == 1
        assert analysis.articulation_points == ["a"]

    def test_chain_count_counts_roots(self) -> None:
        ids = ["a", "b", "c", "d"]
        edges = [_edge("a", "b"), _edge("c", "d")]

        analysis = analyze_graph(ids, edges, {}, set())

        assert analysis.chain_count == 2
        assert analysis.component_count == 2
        assert analysis.hub_claim is None
