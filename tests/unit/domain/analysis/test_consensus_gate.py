"""Tests for the consensus gate."""

from council.domain.analysis.consensus_gate import (
    compute_consensus_gate,
    evaluate_consensus,
    normalize_supporter_provider_ids,
)
from council.domain.models.claim_graph import Claim
from council.domain.models.consensus import GateReason
from council.domain.models.results import BatchResult, ProviderOutput

ORDER = {1: "claude", 2: "gemini", 3: "chatgpt", 4: "qwen"}


def _claims(*supporters: list) -> list[Claim]:
    return [Claim(id=f"c{i}", label=f"Claim {i}", supporters=s) for i, s in enumerate(supporters, 1)]


class TestNormalizeSupporters:
    def test_resolves_indices_and_keeps_raw_ids(self) -> None:
        result = normalize_supporter_provider_ids([1, "gemini", "1", True, None, 9], {1: "claude"})
        assert result == ["claude", "gemini", "9"]

    def test_string_keyed_citation_order(self) -> None:
        assert normalize_supporter_provider_ids([2], {"2": "gemini"}) == ["gemini"]


class TestEvaluateConsensus:
    """Tests for evaluate_consensus() reasons."""

    def test_single_claim_is_monoculture(self) -> None:
        gate = evaluate_consensus(_claims([1, 2, 3]), ["claude", "gemini", "chatgpt"], ORDER)

        assert gate.reason == GateReason.MONOCULTURE
        assert gate.consensus_only is True
        assert gate.skip_refiner and gate.skip_antagonist

    def test_no_claim_above_two_supporters_is_no_anchor(self) -> None:
        gate = evaluate_consensus(
            _claims([1, 2], [2, 3], [3]), ["claude", "gemini", "chatgpt"], ORDER
        )

        assert gate.reason == GateReason.NO_ANCHOR
        assert gate.consensus_only is True
        assert gate.stats.max_supporters == 2

    def test_anchor_proceeds(self) -> None:
        gate = evaluate_consensus(
            _claims([1, 2, 3], [4], [1], [2]),
            ["claude", "gemini", "chatgpt", "qwen"],
            ORDER,
        )

        assert gate.reason == GateReason.HAS_ANCHOR_OUTLIER
        assert gate.consensus_only is False
        assert not gate.skip_refiner
        assert gate.stats.approaches_count == 4
        assert gate.stats.total_models_completed == 4
        assert gate.stats.approaches[0].supporters == ["claude", "gemini", "chatgpt"]
        assert gate.stats.approaches[0].support_ratio == 0.75

    def test_supporters_restricted_to_completed(self) -> None:
        # chatgpt was cited but did not complete the batch
        gate = evaluate_consensus(_claims([1, 2, 3], [1]), ["claude", "gemini"], ORDER)

        assert gate.stats.max_supporters == 2
        assert gate.reason == GateReason.NO_ANCHOR

    def test_raw_provider_ids_as_supporters(self) -> None:
        gate = evaluate_consensus(
            _claims(["claude", "gemini", "chatgpt"], ["qwen"]),
            ["claude", "gemini", "chatgpt", "qwen"],
        )
        assert gate.reason == GateReason.HAS_ANCHOR_OUTLIER

    def test_no_claims_returns_none(self) -> None:
        assert evaluate_consensus([], ["claude"], ORDER) is None


class TestComputeConsensusGate:
    def _batch(self, *provider_ids: str) -> BatchResult:
        return BatchResult(
            results={pid: ProviderOutput(provider_id=pid, text="answer") for pid in provider_ids}
        )

    def test_reads_topology_and_citation_order_from_meta(self) -> None:
        mapping = ProviderOutput(
            provider_id="claude",
            text="narrative",
            meta={
                "graph_topology": {
                    "claims": [
                        {"id": "c1", "supporters": [1, 2, 3]},
                        {"id": "c2", "supporters": [1]},
                    ]
                },
                "citation_source_order": {"1": "claude", "2": "gemini", "3": "chatgpt"},
            },
        )

        gate = compute_consensus_gate(mapping, self._batch("claude", "gemini", "chatgpt"))

        assert gate.reason == GateReason.HAS_ANCHOR_OUTLIER
        assert gate.consensus_only is False

    def test_missing_inputs(self) -> None:
        assert compute_consensus_gate(None, self._batch("claude")) is None
        mapping = ProviderOutput(provider_id="claude", text="x", meta={})
        assert compute_consensus_gate(mapping, None) is None
        assert compute_consensus_gate(mapping, self._batch("claude")) is None
