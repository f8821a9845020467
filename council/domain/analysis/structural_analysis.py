"""Structural analysis of a claim graph.

Per-claim ratios come first (support, leverage, keystone score, skew),
then flags are assigned from percentiles of the live distribution, then
whole-graph ratios feed seven weighted pattern scores. The highest score
names the primary problem-structure pattern.
"""

import logging
import math
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from typing import Any

from council.domain.analysis.graph_metrics import (
    GraphAnalysis,
    analyze_graph,
    clamp01,
    is_in_bottom_percentile,
    is_in_top_percentile,
    signal_strength,
    top_n_count,
)
from council.domain.analysis.thresholds import AnalysisConfig
from council.domain.models.claim_graph import Claim, ClaimGraph, ClaimRole, Edge, EdgeType
from council.domain.models.consensus import ProblemStructure, ShapePattern

logger = logging.getLogger(__name__)

SHAPE_IMPLICATIONS: dict[ShapePattern, dict[str, str]] = {
    ShapePattern.SETTLED: {
        "understand": "High agreement. The insight is what consensus overlooks or assumes without stating.",
        "gauntlet": "Consensus is not truth. Test the strongest claim: if it falls, consensus was groupthink.",
    },
    ShapePattern.LINEAR: {
        "understand": "Find the sequence. The insight is often where the path becomes non-obvious.",
        "gauntlet": "Test each step: is it truly prerequisite? Can steps be reordered or parallelized?",
    },
    ShapePattern.KEYSTONE: {
        "understand": "Everything hinges on a keystone. The insight is the keystone, not the branches.",
        "gauntlet": "Test the keystone ruthlessly. If it fails, the entire structure collapses.",
    },
    ShapePattern.CONTESTED: {
        "understand": "Disagreement is the signal. Find the axis of disagreement; that reveals the real question.",
        "gauntlet": "Force resolution. One claim per conflict must fail, or find conditions that differentiate them.",
    },
    ShapePattern.TRADEOFF: {
        "understand": "There is no universal best. The insight is the map of what you give up for what you gain.",
        "gauntlet": "Test if tradeoffs are real or false dichotomies. Look for dominated options.",
    },
    ShapePattern.DIMENSIONAL: {
        "understand": "Multiple independent factors determine the answer. Find the governing conditions.",
        "gauntlet": "Test each dimension independently. Does the answer cover all relevant combinations?",
    },
    ShapePattern.EXPLORATORY: {
        "understand": "No strong structure detected. Value lies in cataloging the territory and identifying patterns.",
        "gauntlet": "Test relevance: which claims answer the query vs. which are interesting but tangential?",
    },
}


# ============================================================================
# Result types
# ============================================================================


@dataclass
class EnrichedClaim:
    id: str
    label: str
    supporters: list[int | str]
    role: ClaimRole | None
    support_ratio: float
    leverage: float
    leverage_factors: dict[str, float]
    keystone_score: float
    support_skew: float
    in_degree: int
    out_degree: int
    is_chain_root: bool
    is_chain_terminal: bool
    evidence_gap_score: float = 0.0
    is_high_support: bool = False
    is_leverage_inversion: bool = False
    is_keystone: bool = False
    is_evidence_gap: bool = False
    is_outlier: bool = False
    is_contested: bool = False
    is_conditional: bool = False
    is_challenger: bool = False
    is_isolated: bool = False


@dataclass
class CoreRatios:
    concentration: float
    alignment: float
    tension: float
    fragmentation: float
    depth: float


@dataclass
class LandscapeMetrics:
    dominant_type: str
    type_distribution: dict[str, int]
    dominant_role: str
    role_distribution: dict[str, int]
    claim_count: int
    model_count: int
    convergence_ratio: float


@dataclass
class CascadeRisk:
    source_id: str
    source_label: str
    dependent_ids: list[str]
    dependent_labels: list[str]
    depth: int


@dataclass
class LeverageInversion:
    claim_id: str
    claim_label: str
    supporter_count: int
    reason: str
    affected_claims: list[str] = field(default_factory=list)


@dataclass
class ConflictPair:
    claim_a: str
    claim_b: str
    is_both_consensus: bool
    dynamics: str


@dataclass
class TradeoffPair:
    claim_a: str
    claim_b: str
    symmetry: str


@dataclass
class ConvergencePoint:
    target_id: str
    target_label: str
    source_ids: list[str]
    edge_type: str


@dataclass
class StructuralPatterns:
    leverage_inversions: list[LeverageInversion] = field(default_factory=list)
    cascade_risks: list[CascadeRisk] = field(default_factory=list)
    conflicts: list[ConflictPair] = field(default_factory=list)
    tradeoffs: list[TradeoffPair] = field(default_factory=list)
    convergence_points: list[ConvergencePoint] = field(default_factory=list)
    isolated_claims: list[str] = field(default_factory=list)


@dataclass
class StructuralAnalysis:
    landscape: LandscapeMetrics
    claims: list[EnrichedClaim]
    patterns: StructuralPatterns
    graph: GraphAnalysis
    ratios: CoreRatios
    signal_strength: float
    shape: ProblemStructure

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation for events and persistence."""
        return {
            "landscape": asdict(self.landscape),
            "claims": [asdict(c) for c in self.claims],
            "patterns": asdict(self.patterns),
            "graph": asdict(self.graph),
            "ratios": asdict(self.ratios),
            "signal_strength": self.signal_strength,
            "shape": self.shape.model_dump(mode="json"),
        }


@dataclass
class _Tension:
    edge_type: EdgeType
    is_conditional: bool
    is_both_high_support: bool


# ============================================================================
# Claim ratios and flags
# ============================================================================


def _claim_ratios(
    claim: Claim, edges: list[Edge], model_count: int, config: AnalysisConfig
) -> EnrichedClaim:
    safe_model_count = max(model_count, 1)
    supporters = list(claim.supporters)

    support_ratio = len(supporters) / safe_model_count
    support_weight = support_ratio * config.support_weight_multiplier

    roles = config.role_weights
    role_weight = getattr(roles, claim.role.value) if claim.role else roles.default

    outgoing = [e for e in edges if e.from_ == claim.id]
    incoming = [e for e in edges if e.to == claim.id]
    prereq_out = sum(1 for e in outgoing if e.type == EdgeType.PREREQUISITE)
    prereq_in = sum(1 for e in incoming if e.type == EdgeType.PREREQUISITE)
    conflicts = sum(
        1
        for e in edges
        if e.type == EdgeType.CONFLICTS and claim.id in (e.from_, e.to)
    )

    weights = config.connectivity_weights
    connectivity_weight = (
        prereq_out * weights.prerequisite_out
        + prereq_in * weights.prerequisite_in
        + conflicts * weights.conflict
        + (len(outgoing) + len(incoming)) * weights.any_edge
    )

    is_chain_root = prereq_in == 0 and prereq_out > 0
    is_chain_terminal = prereq_in > 0 and prereq_out == 0
    position_weight = config.chain_root_bonus if is_chain_root else 0.0

    leverage = support_weight + role_weight + connectivity_weight + position_weight

    per_model = Counter(str(s) for s in supporters)
    support_skew = max(per_model.values()) / len(supporters) if supporters else 0.0

    return EnrichedClaim(
        id=claim.id,
        label=claim.label or claim.id,
        supporters=supporters,
        role=claim.role,
        support_ratio=support_ratio,
        leverage=leverage,
        leverage_factors={
            "support_weight": support_weight,
            "role_weight": role_weight,
            "connectivity_weight": connectivity_weight,
            "position_weight": position_weight,
        },
        keystone_score=float(len(outgoing) * len(supporters)),
        support_skew=support_skew,
        in_degree=len(incoming),
        out_degree=len(outgoing),
        is_chain_root=is_chain_root,
        is_chain_terminal=is_chain_terminal,
    )


def _assign_percentile_flags(
    claims: list[EnrichedClaim],
    edges: list[Edge],
    cascades: dict[str, CascadeRisk],
    top_claim_ids: set[str],
    config: AnalysisConfig,
) -> None:
    for claim in claims:
        cascade = cascades.get(claim.id)
        if cascade and claim.supporters:
            claim.evidence_gap_score = len(cascade.dependent_ids) / len(claim.supporters)

    support_ratios = [c.support_ratio for c in claims]
    leverages = [c.leverage for c in claims]
    keystone_scores = [c.keystone_score for c in claims]
    skews = [c.support_skew for c in claims]
    gap_scores = [c.evidence_gap_score for c in claims]
    connected = {e.from_ for e in edges} | {e.to for e in edges}

    for claim in claims:
        claim.is_high_support = is_in_top_percentile(
            claim.support_ratio, support_ratios, config.high_support_percentile
        )
        is_low_support = is_in_bottom_percentile(
            claim.support_ratio, support_ratios, config.inversion_support_percentile
        )
        is_high_leverage = is_in_top_percentile(
            claim.leverage, leverages, config.inversion_leverage_percentile
        )
        claim.is_leverage_inversion = is_low_support and is_high_leverage

        load_bearing = (
            sum(1 for e in edges if e.from_ == claim.id and e.type == EdgeType.PREREQUISITE) >= 2
        )
        claim.is_keystone = (
            is_in_top_percentile(claim.keystone_score, keystone_scores, config.keystone_percentile)
            and claim.out_degree >= 2
            and load_bearing
        )
        claim.is_evidence_gap = (
            is_in_top_percentile(claim.evidence_gap_score, gap_scores, config.evidence_gap_percentile)
            and claim.evidence_gap_score > 0
        )
        claim.is_outlier = (
            is_in_top_percentile(claim.support_skew, skews, config.outlier_percentile)
            and len(claim.supporters) >= 2
        )

        claim.is_contested = any(
            e.type == EdgeType.CONFLICTS and claim.id in (e.from_, e.to) for e in edges
        )
        claim.is_conditional = any(
            e.type == EdgeType.PREREQUISITE and e.to == claim.id for e in edges
        )
        challenges_top = claim.role == ClaimRole.CHALLENGER and any(
            e.from_ == claim.id
            and e.to in top_claim_ids
            and e.type in (EdgeType.CONFLICTS, EdgeType.PREREQUISITE)
            for e in edges
        )
        claim.is_challenger = is_low_support and challenges_top
        claim.is_isolated = claim.id not in connected


# ============================================================================
# Pattern detectors
# ============================================================================


def _cascade_depth(source_id: str, children: dict[str, list[str]]) -> int:
    visited: set[str] = set()
    max_depth = 0

    def dfs(node: str, depth: int) -> None:
        nonlocal max_depth
        if node in visited:
            return
        visited.add(node)
        max_depth = max(max_depth, depth)
        for child in children.get(node, []):
            dfs(child, depth + 1)

    dfs(source_id, 0)
    return max_depth


def detect_cascade_risks(edges: list[Edge], labels: dict[str, str]) -> list[CascadeRisk]:
    """Every claim that is a prerequisite, with all transitive dependents."""
    children: dict[str, list[str]] = {}
    for edge in edges:
        if edge.type == EdgeType.PREREQUISITE:
            children.setdefault(edge.from_, []).append(edge.to)

    risks: list[CascadeRisk] = []
    for source_id, direct in children.items():
        dependents: list[str] = []
        seen: set[str] = set()
        queue = deque(direct)
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            dependents.append(current)
            queue.extend(children.get(current, []))

        risks.append(
            CascadeRisk(
                source_id=source_id,
                source_label=labels.get(source_id, source_id),
                dependent_ids=dependents,
                dependent_labels=[labels.get(d, d) for d in dependents],
                depth=_cascade_depth(source_id, children),
            )
        )
    return risks


def _detect_leverage_inversions(
    claims: list[EnrichedClaim], edges: list[Edge], top_claim_ids: set[str]
) -> list[LeverageInversion]:
    inversions: list[LeverageInversion] = []
    for claim in claims:
        if not claim.is_leverage_inversion:
            continue
        prereq_targets = [
            e.to for e in edges if e.type == EdgeType.PREREQUISITE and e.from_ == claim.id
        ]
        top_targets = [t for t in prereq_targets if t in top_claim_ids]

        if claim.role == ClaimRole.CHALLENGER and top_targets:
            reason, affected = "challenger_prerequisite_to_consensus", top_targets
        elif prereq_targets:
            reason, affected = "singular_foundation", prereq_targets
        elif claim.leverage_factors["connectivity_weight"] > claim.leverage * 0.4:
            reason, affected = "high_connectivity_low_support", []
        else:
            continue

        inversions.append(
            LeverageInversion(
                claim_id=claim.id,
                claim_label=claim.label,
                supporter_count=len(claim.supporters),
                reason=reason,
                affected_claims=affected,
            )
        )
    return inversions


def _detect_conflicts(
    edges: list[Edge],
    by_id: dict[str, EnrichedClaim],
    top_claim_ids: set[str],
    symmetric_delta: float,
) -> list[ConflictPair]:
    pairs: list[ConflictPair] = []
    for edge in edges:
        if edge.type != EdgeType.CONFLICTS:
            continue
        a, b = by_id[edge.from_], by_id[edge.to]
        delta = abs(a.support_ratio - b.support_ratio)
        pairs.append(
            ConflictPair(
                claim_a=a.id,
                claim_b=b.id,
                is_both_consensus=a.id in top_claim_ids and b.id in top_claim_ids,
                dynamics="symmetric" if delta < symmetric_delta else "asymmetric",
            )
        )
    return pairs


def _detect_tradeoffs(edges: list[Edge], top_claim_ids: set[str]) -> list[TradeoffPair]:
    pairs: list[TradeoffPair] = []
    for edge in edges:
        if edge.type != EdgeType.TRADEOFF:
            continue
        a_top, b_top = edge.from_ in top_claim_ids, edge.to in top_claim_ids
        if a_top and b_top:
            symmetry = "both_consensus"
        elif not a_top and not b_top:
            symmetry = "both_singular"
        else:
            symmetry = "asymmetric"
        pairs.append(TradeoffPair(claim_a=edge.from_, claim_b=edge.to, symmetry=symmetry))
    return pairs


def _detect_convergence_points(
    edges: list[Edge], labels: dict[str, str]
) -> list[ConvergencePoint]:
    grouped: dict[tuple[str, EdgeType], list[str]] = {}
    for edge in edges:
        if edge.type in (EdgeType.PREREQUISITE, EdgeType.SUPPORTS):
            grouped.setdefault((edge.to, edge.type), []).append(edge.from_)

    return [
        ConvergencePoint(
            target_id=target,
            target_label=labels.get(target, target),
            source_ids=sources,
            edge_type=edge_type.value,
        )
        for (target, edge_type), sources in grouped.items()
        if len(sources) >= 2
    ]


# ============================================================================
# Whole-graph ratios and shape
# ============================================================================


def _landscape(graph: ClaimGraph, model_count: int | None, config: AnalysisConfig) -> LandscapeMetrics:
    claims = graph.claims
    types = Counter(c.type.value for c in claims)
    roles = Counter(c.role.value for c in claims if c.role)

    if not model_count or model_count <= 0:
        distinct = {str(s) for c in claims for s in c.supporters}
        model_count = len(distinct) or 1

    top_count = top_n_count(len(claims), config.top_claims_ratio)
    counts = sorted((len(c.supporters) for c in claims), reverse=True)
    top_level = counts[top_count - 1] if len(counts) >= top_count else 1
    top_level = top_level or 1
    convergent = sum(1 for c in claims if len(c.supporters) >= top_level)

    return LandscapeMetrics(
        dominant_type=types.most_common(1)[0][0] if types else "prescriptive",
        type_distribution=dict(types),
        dominant_role=roles.most_common(1)[0][0] if roles else "anchor",
        role_distribution=dict(roles),
        claim_count=len(claims),
        model_count=model_count,
        convergence_ratio=convergent / len(claims) if claims else 0.0,
    )


def _core_ratios(
    claims: list[EnrichedClaim],
    edges: list[Edge],
    graph: GraphAnalysis,
    model_count: int,
    config: AnalysisConfig,
) -> CoreRatios:
    claim_count = len(claims)
    edge_count = len(edges)

    max_support = max((len(c.supporters) for c in claims), default=0)
    concentration = max_support / model_count if model_count > 0 else 0.0

    top_count = top_n_count(claim_count, config.top_claims_ratio)
    by_support = sorted(claims, key=lambda c: len(c.supporters), reverse=True)
    top_ids = {c.id for c in by_support[:top_count]}
    top_edges = [e for e in edges if e.from_ in top_ids and e.to in top_ids]
    reinforcing = sum(
        1 for e in top_edges if e.type in (EdgeType.SUPPORTS, EdgeType.PREREQUISITE)
    )
    alignment = reinforcing / len(top_edges) if top_edges else 0.5

    tension_edges = sum(1 for e in edges if e.type in (EdgeType.CONFLICTS, EdgeType.TRADEOFF))
    tension = tension_edges / edge_count if edge_count else 0.0

    fragmentation = (
        (graph.component_count - 1) / (claim_count - 1) if claim_count > 1 else 0.0
    )
    depth = len(graph.longest_chain) / claim_count if claim_count else 0.0

    return CoreRatios(
        concentration=concentration,
        alignment=alignment,
        tension=tension,
        fragmentation=fragmentation,
        depth=depth,
    )


def _pct(value: float) -> str:
    return f"{round(value * 100)}%"


def _evidence(
    pattern: ShapePattern,
    ratios: CoreRatios,
    tensions: list[_Tension],
    graph: GraphAnalysis,
    edge_count: int,
    claim_count: int,
) -> list[str]:
    unconditional_conflicts = [
        t for t in tensions if t.edge_type == EdgeType.CONFLICTS and not t.is_conditional
    ]
    coherence = graph.local_coherence

    if pattern == ShapePattern.SETTLED:
        return [
            f"Concentration: {_pct(ratios.concentration)}",
            f"Alignment: {_pct(ratios.alignment)}",
            f"Tension: {_pct(ratios.tension)}",
            f"Local coherence: {_pct(coherence)}",
        ]
    if pattern == ShapePattern.LINEAR:
        return [
            f"Chain depth: {len(graph.longest_chain)} claims",
            f"{edge_count} edges form sequential structure",
            f"Fragmentation: {_pct(ratios.fragmentation)}",
        ]
    if pattern == ShapePattern.KEYSTONE:
        return [
            f"Hub: {graph.hub_claim} ({graph.hub_dominance:.1f}x dominance)",
            f"Concentration: {_pct(ratios.concentration)}",
            f"{edge_count} edges radiate from hub",
        ]
    if pattern == ShapePattern.CONTESTED:
        high_support = [t for t in unconditional_conflicts if t.is_both_high_support]
        return [
            f"{len(unconditional_conflicts)} conflict(s)",
            f"{len(high_support)} high-support conflict(s)",
            f"Tension: {_pct(ratios.tension)}",
        ]
    if pattern == ShapePattern.TRADEOFF:
        tradeoffs = [t for t in tensions if t.edge_type == EdgeType.TRADEOFF]
        return [
            f"{len(tradeoffs)} tradeoff(s)",
            f"Tension: {_pct(ratios.tension)}",
            f"Distributed support: {_pct(1 - ratios.concentration)}",
        ]
    if pattern == ShapePattern.DIMENSIONAL:
        return [
            f"{graph.component_count} distinct cluster(s)",
            f"Local coherence: {_pct(coherence)}",
            f"Alignment within clusters: {_pct(ratios.alignment)}",
        ]
    return [
        f"{edge_count} edges across {claim_count} claims",
        f"Local coherence: {_pct(coherence)}",
        f"Distributed support: {_pct(1 - ratios.concentration)}",
    ]


def determine_shape(
    ratios: CoreRatios,
    tensions: list[_Tension],
    graph: GraphAnalysis,
    claims: list[EnrichedClaim],
    edges: list[Edge],
    signal: float,
    config: AnalysisConfig,
) -> ProblemStructure:
    """Score the seven patterns and pick the strongest.

    Edge-count thresholds scale with graph size so sparse graphs are not
    mistaken for structured ones.
    """
    claim_count = len(claims)
    edge_count = len(edges)
    coherence = graph.local_coherence
    c = ratios
    thresholds = config.edge_thresholds
    w = config.pattern_weights
    p = config.penalties

    min_edges_keystone = max(thresholds.minimum, math.ceil(claim_count * thresholds.keystone_ratio))
    min_edges_linear = max(thresholds.minimum, math.ceil(claim_count * thresholds.linear_ratio))

    conflict_count = sum(
        1 for t in tensions if t.edge_type == EdgeType.CONFLICTS and not t.is_conditional
    )
    tradeoff_count = sum(1 for t in tensions if t.edge_type == EdgeType.TRADEOFF)
    high_support_conflicts = sum(
        1
        for t in tensions
        if t.edge_type == EdgeType.CONFLICTS and t.is_both_high_support and not t.is_conditional
    )

    hub_out = 0
    if graph.hub_claim is not None:
        hub_out = sum(
            1
            for e in edges
            if e.from_ == graph.hub_claim and e.type in (EdgeType.SUPPORTS, EdgeType.PREREQUISITE)
        )
    hub_score = clamp01((graph.hub_dominance - 1) / 2) if hub_out >= min_edges_keystone else 0.0
    hub_share = hub_out / claim_count if claim_count else 0.0
    mid_components = 1 < graph.component_count < claim_count * thresholds.mid_components_ratio
    enough_edges = edge_count >= min_edges_linear

    scores: dict[ShapePattern, float] = {
        ShapePattern.SETTLED: clamp01(
            c.concentration * w.settled.concentration
            + c.alignment * w.settled.alignment
            + (1 - c.tension) * w.settled.low_tension
            + coherence * w.settled.coherence
        ),
        ShapePattern.LINEAR: clamp01(
            c.depth * w.linear.depth
            + (w.linear.enough_edges if enough_edges else 0.0)
            + (1 - c.fragmentation) * w.linear.connectedness
        ),
        ShapePattern.KEYSTONE: clamp01(
            hub_score * w.keystone.hub_dominance
            + hub_share * w.keystone.hub_share
            + c.concentration * w.keystone.concentration
        ),
        ShapePattern.CONTESTED: clamp01(
            (w.contested.high_support_conflict if high_support_conflicts >= 1 else 0.0)
            + c.tension * w.contested.tension
            + (1 - c.alignment) * w.contested.misalignment
            + (w.contested.any_conflict if conflict_count > 0 else 0.0)
        ),
        ShapePattern.TRADEOFF: clamp01(
            (w.tradeoff.any_tradeoff if tradeoff_count > 0 else 0.0)
            + c.tension * w.tradeoff.tension
            + (1 - c.concentration) * w.tradeoff.dispersion
            + (w.tradeoff.tradeoffs_dominate if tradeoff_count > conflict_count else 0.0)
        ),
        ShapePattern.DIMENSIONAL: clamp01(
            coherence * w.dimensional.coherence
            + c.depth * w.dimensional.depth
            + c.alignment * w.dimensional.alignment
            + (w.dimensional.mid_components if mid_components else 0.0)
        ),
        ShapePattern.EXPLORATORY: clamp01(
            (1 - coherence) * w.exploratory.incoherence
            + (1 - c.concentration) * w.exploratory.dispersion
            + (w.exploratory.sparse_edges if not enough_edges else 0.0)
            + (w.exploratory.low_tension if c.tension < w.exploratory.low_tension_below else 0.0)
        ),
    }

    ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
    pattern, best = ranked[0]
    runner_up = ranked[1][1] if len(ranked) > 1 else 0.0

    if best < config.shape_score_floor:
        pattern = ShapePattern.EXPLORATORY
        base_confidence = config.floor_confidence
    else:
        base_confidence = clamp01(
            config.confidence.base
            + (best - runner_up) * config.confidence.margin
            + best * config.confidence.magnitude
        )

    penalty = (1 - signal) * p.weak_signal
    warnings: list[str] = []

    by_id = {cl.id: cl for cl in claims}
    fragile_bridges = [
        aid for aid in graph.articulation_points if aid in by_id and not by_id[aid].is_high_support
    ]
    if fragile_bridges:
        penalty += p.fragile_bridge
        warnings.append(f"{len(fragile_bridges)} fragile bridge(s)")

    conditional = [t for t in tensions if t.is_conditional]
    if conditional:
        penalty += min(p.hidden_conflict_cap, p.per_hidden_conflict * len(conditional))
        warnings.append(f"{len(conditional)} hidden conflict(s)")

    if (
        graph.cluster_cohesion < p.disconnected_cohesion_below
        and c.concentration > p.disconnected_concentration_above
        and enough_edges
    ):
        penalty += p.disconnected_consensus
        warnings.append(f"Disconnected consensus ({_pct(graph.cluster_cohesion)} cohesion)")

    confidence = clamp01(max(config.min_confidence, base_confidence - penalty))

    evidence = _evidence(pattern, ratios, tensions, graph, edge_count, claim_count)
    evidence.extend(warnings)
    evidence.append(f"Signal strength: {_pct(signal)}")

    return ProblemStructure(
        primary_pattern=pattern,
        confidence=confidence,
        evidence=evidence,
        scores={p.value: s for p, s in scores.items()},
        implications=SHAPE_IMPLICATIONS[pattern],
    )


def compute_structural_analysis(
    graph: ClaimGraph,
    *,
    model_count: int | None = None,
    config: AnalysisConfig | None = None,
) -> StructuralAnalysis:
    """Analyse a claim graph end to end.

    Args:
        graph: Claims and edges (edges must reference known claims)
        model_count: Number of models that took part. Defaults to the
            number of distinct supporters, or 1.
        config: Percentile thresholds and weights

    Returns:
        StructuralAnalysis with enriched claims, patterns, ratios and shape.
    """
    config = config or AnalysisConfig()
    edges = list(graph.edges)
    landscape = _landscape(graph, model_count, config)
    claim_ids = [c.id for c in graph.claims]
    labels = {c.id: (c.label or c.id) for c in graph.claims}

    claims = [_claim_ratios(c, edges, landscape.model_count, config) for c in graph.claims]
    cascade_risks = detect_cascade_risks(edges, labels)

    top_count = top_n_count(len(claims), config.top_claims_ratio)
    by_support = sorted(claims, key=lambda c: c.support_ratio, reverse=True)
    top_claim_ids = {c.id for c in by_support[:top_count]}

    _assign_percentile_flags(
        claims, edges, {r.source_id: r for r in cascade_risks}, top_claim_ids, config
    )
    by_id = {c.id: c for c in claims}

    graph_analysis = analyze_graph(
        claim_ids,
        edges,
        {c.id: c.support_ratio for c in claims},
        {c.id for c in claims if c.is_high_support},
    )
    ratios = _core_ratios(claims, edges, graph_analysis, landscape.model_count, config)

    patterns = StructuralPatterns(
        leverage_inversions=_detect_leverage_inversions(claims, edges, top_claim_ids),
        cascade_risks=cascade_risks,
        conflicts=_detect_conflicts(edges, by_id, top_claim_ids, config.symmetric_tension_delta),
        tradeoffs=_detect_tradeoffs(edges, top_claim_ids),
        convergence_points=_detect_convergence_points(edges, labels),
        isolated_claims=[c.id for c in claims if c.is_isolated],
    )

    tensions = [
        _Tension(
            edge_type=e.type,
            is_conditional=by_id[e.from_].is_conditional or by_id[e.to].is_conditional,
            is_both_high_support=by_id[e.from_].is_high_support and by_id[e.to].is_high_support,
        )
        for e in edges
        if e.type in (EdgeType.CONFLICTS, EdgeType.TRADEOFF)
    ]
    signal = signal_strength(
        len(claims), len(edges), landscape.model_count, [c.supporters for c in claims]
    )
    shape = determine_shape(ratios, tensions, graph_analysis, claims, edges, signal, config)

    logger.debug(
        f"Structural analysis: {len(claims)} claims, {len(edges)} edges, "
        f"pattern={shape.primary_pattern.value} confidence={shape.confidence:.2f}"
    )

    return StructuralAnalysis(
        landscape=landscape,
        claims=claims,
        patterns=patterns,
        graph=graph_analysis,
        ratios=ratios,
        signal_strength=signal,
        shape=shape,
    )
