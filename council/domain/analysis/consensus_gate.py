"""Consensus gate: decide whether deep critique phases are worth running."""

import logging
from typing import Any, Iterable, Mapping

from council.domain.models.claim_graph import Claim, ClaimGraph
from council.domain.models.consensus import (
    ApproachStat,
    ConsensusGate,
    ConsensusStats,
    GateReason,
)
from council.domain.models.results import BatchResult, ProviderOutput

logger = logging.getLogger(__name__)


def normalize_supporter_provider_ids(
    supporters: Iterable[Any],
    citation_order: Mapping[Any, str] | None = None,
) -> list[str]:
    """Resolve supporters to provider ids, deduplicated in first-seen order.

    Numeric supporters (ints or digit strings) are citation indices looked
    up in ``citation_order``; unknown indices fall back to their string
    form. Anything else is taken as a raw provider id.
    """
    order = citation_order or {}
    resolved: list[str] = []
    for supporter in supporters:
        if isinstance(supporter, bool) or supporter is None:
            continue
        if isinstance(supporter, int) or (isinstance(supporter, str) and supporter.strip().isdigit()):
            index = int(supporter)
            provider_id = order.get(index) or order.get(str(index)) or str(index)
        else:
            provider_id = str(supporter).strip()
        if provider_id and provider_id not in resolved:
            resolved.append(provider_id)
    return resolved


def evaluate_consensus(
    claims: Iterable[Claim],
    completed_provider_ids: Iterable[str],
    citation_order: Mapping[Any, str] | None = None,
) -> ConsensusGate | None:
    """Apply the gate to claims with supporters restricted to completed providers.

    Returns None when there are no usable claims.
    """
    completed = list(completed_provider_ids)
    completed_set = set(completed)
    total = len(completed)

    approaches: list[ApproachStat] = []
    for claim in claims:
        if not claim.id and not claim.label:
            continue
        supporters = [
            pid
            for pid in normalize_supporter_provider_ids(claim.supporters, citation_order)
            if pid in completed_set
        ]
        approaches.append(
            ApproachStat(
                claim_id=claim.id,
                label=claim.label or claim.id,
                supporters=supporters,
                support_count=len(supporters),
                support_ratio=len(supporters) / total if total else 0.0,
            )
        )

    if not approaches:
        return None

    max_supporters = max(a.support_count for a in approaches)
    if len(approaches) == 1:
        reason = GateReason.MONOCULTURE
    elif max_supporters <= 2:
        reason = GateReason.NO_ANCHOR
    else:
        reason = GateReason.HAS_ANCHOR_OUTLIER
    skip = reason != GateReason.HAS_ANCHOR_OUTLIER

    return ConsensusGate(
        consensus_only=skip,
        reason=reason,
        stats=ConsensusStats(
            total_models_completed=total,
            approaches_count=len(approaches),
            max_supporters=max_supporters,
            approaches=approaches,
        ),
        skip_refiner=skip,
        skip_antagonist=skip,
    )


def compute_consensus_gate(
    mapping_result: ProviderOutput | None,
    batch_result: BatchResult | None,
) -> ConsensusGate | None:
    """Compute the gate from a mapping output and the batch it read.

    The mapping output's ``meta`` carries ``graph_topology`` and, when
    supporters are citation indices, ``citation_source_order``.

    Returns:
        The gate, or None when the mapping has no claims or the batch is
        unavailable.
    """
    if mapping_result is None or batch_result is None:
        return None

    topology = mapping_result.meta.get("graph_topology") or {}
    if not isinstance(topology, dict):
        return None
    graph = ClaimGraph.from_topology(topology)
    if not graph.claims:
        return None

    gate = evaluate_consensus(
        graph.claims,
        batch_result.completed_provider_ids(),
        mapping_result.meta.get("citation_source_order"),
    )
    if gate is not None:
        logger.info(
            f"Consensus gate: reason={gate.reason.value} consensus_only={gate.consensus_only} "
            f"max_supporters={gate.stats.max_supporters}"
        )
    return gate
