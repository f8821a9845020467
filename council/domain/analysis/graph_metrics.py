"""Graph primitives over claim ids and typed edges."""

import math
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from council.domain.models.claim_graph import Edge, EdgeType

_REINFORCING = (EdgeType.SUPPORTS, EdgeType.PREREQUISITE)


# ============================================================================
# Percentiles
# ============================================================================


def percentile_threshold(values: Sequence[float], percentile: float) -> float:
    """Value at ``percentile`` (0-1) of the sorted distribution."""
    if not values:
        return 0.0
    ordered = sorted(values)
    index = math.floor(len(ordered) * percentile)
    return ordered[min(index, len(ordered) - 1)]


def top_n_count(total: int, ratio: float) -> int:
    """Size of the "top N%" slice, never less than one."""
    return max(1, math.ceil(total * ratio))


def is_in_top_percentile(value: float, values: Sequence[float], percentile: float) -> bool:
    return value >= percentile_threshold(values, 1 - percentile)


def is_in_bottom_percentile(value: float, values: Sequence[float], percentile: float) -> bool:
    return value <= percentile_threshold(values, percentile)


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


# ============================================================================
# Structure
# ============================================================================


def _undirected_adjacency(claim_ids: Iterable[str], edges: Sequence[Edge]) -> dict[str, list[str]]:
    adjacency: dict[str, list[str]] = {cid: [] for cid in claim_ids}
    for edge in edges:
        if edge.from_ in adjacency and edge.to in adjacency:
            adjacency[edge.from_].append(edge.to)
            adjacency[edge.to].append(edge.from_)
    return adjacency


def connected_components(claim_ids: Sequence[str], edges: Sequence[Edge]) -> list[list[str]]:
    """Components over every edge type, treating edges as undirected."""
    adjacency = _undirected_adjacency(claim_ids, edges)
    visited: set[str] = set()
    components: list[list[str]] = []

    for start in claim_ids:
        if start in visited:
            continue
        component: list[str] = []
        stack = [start]
        while stack:
            node = stack.pop()
            if node in visited:
                continue
            visited.add(node)
            component.append(node)
            stack.extend(n for n in reversed(adjacency[node]) if n not in visited)
        components.append(component)
    return components


def longest_prerequisite_chain(claim_ids: Sequence[str], edges: Sequence[Edge]) -> list[str]:
    """Longest path along prerequisite edges, starting from chain roots.

    Roots are claims with no incoming prerequisite. A claim already on the
    current path is never revisited, so cycles terminate. When every claim
    sits on a cycle there are no roots and every claim is tried as a start.
    """
    children: dict[str, list[str]] = {cid: [] for cid in claim_ids}
    has_incoming: set[str] = set()
    for edge in edges:
        if edge.type == EdgeType.PREREQUISITE and edge.from_ in children:
            children[edge.from_].append(edge.to)
            has_incoming.add(edge.to)

    def walk(node: str, path: list[str]) -> list[str]:
        extended = path + [node]
        best = extended
        for child in children.get(node, []):
            if child in extended:
                continue
            candidate = walk(child, extended)
            if len(candidate) > len(best):
                best = candidate
        return best

    longest: list[str] = []
    roots = [cid for cid in claim_ids if cid not in has_incoming]
    for start in roots or claim_ids:
        chain = walk(start, [])
        if len(chain) > len(longest):
            longest = chain
    return longest


def articulation_points(claim_ids: Sequence[str], edges: Sequence[Edge]) -> list[str]:
    """Cut vertices of the undirected claim graph (Tarjan)."""
    adjacency = _undirected_adjacency(claim_ids, edges)
    discovery: dict[str, int] = {}
    low: dict[str, int] = {}
    parent: dict[str, str | None] = {}
    points: list[str] = []
    timer = 0

    def dfs(u: str) -> None:
        nonlocal timer
        timer += 1
        discovery[u] = low[u] = timer
        children = 0
        for v in adjacency[u]:
            if v not in discovery:
                children += 1
                parent[v] = u
                dfs(v)
                low[u] = min(low[u], low[v])
                if parent[u] is not None and low[v] >= discovery[u] and u not in points:
                    points.append(u)
            elif v != parent[u]:
                low[u] = min(low[u], discovery[v])
        if parent[u] is None and children > 1 and u not in points:
            points.append(u)

    for cid in claim_ids:
        if cid not in discovery:
            parent[cid] = None
            dfs(cid)
    return points


def signal_strength(
    claim_count: int,
    edge_count: int,
    model_count: int,
    supporters: Sequence[Sequence[object]],
) -> float:
    """How much structure the graph carries, in [0, 1].

    Blends edge density, variance of normalised support counts and the
    share of models that support at least one claim.
    """
    min_edges = max(3, claim_count * 0.15)
    edge_signal = clamp01(edge_count / min_edges)

    counts = [len(s) for s in supporters]
    if counts:
        max_support = max(max(counts), 1)
        normalized = [c / max_support for c in counts]
        mean = sum(normalized) / len(normalized)
        variance = sum((v - mean) ** 2 for v in normalized) / len(normalized)
    else:
        variance = 0.0
    support_signal = clamp01(variance * 5)

    unique_models = {str(s) for group in supporters for s in group}
    coverage = len(unique_models) / model_count if model_count > 0 else 0.0

    return edge_signal * 0.4 + support_signal * 0.3 + coverage * 0.3


# ============================================================================
# Whole-graph analysis
# ============================================================================


@dataclass
class GraphAnalysis:
    component_count: int
    components: list[list[str]]
    longest_chain: list[str]
    chain_count: int
    hub_claim: str | None
    hub_dominance: float
    articulation_points: list[str] = field(default_factory=list)
    cluster_cohesion: float = 1.0
    local_coherence: float = 0.0


def analyze_graph(
    claim_ids: Sequence[str],
    edges: Sequence[Edge],
    support_ratios: dict[str, float],
    high_support_ids: set[str],
) -> GraphAnalysis:
    """Topology summary: components, chains, hub, cohesion and coherence."""
    components = connected_components(claim_ids, edges)
    chain = longest_prerequisite_chain(claim_ids, edges)

    prereq_from = {e.from_ for e in edges if e.type == EdgeType.PREREQUISITE}
    prereq_to = {e.to for e in edges if e.type == EdgeType.PREREQUISITE}
    chain_count = sum(1 for cid in claim_ids if cid in prereq_from and cid not in prereq_to)

    out_degree = {cid: 0 for cid in claim_ids}
    for edge in edges:
        if edge.type in _REINFORCING and edge.from_ in out_degree:
            out_degree[edge.from_] += 1
    ranked = sorted(out_degree.items(), key=lambda kv: kv[1], reverse=True)
    top_id, top_out = ranked[0] if ranked else (None, 0)
    second_out = ranked[1][1] if len(ranked) > 1 else 0
    if second_out > 0:
        hub_dominance = top_out / second_out
    else:
        hub_dominance = 10.0 if top_out > 0 else 0.0
    hub_claim = top_id if hub_dominance >= 1.5 and top_out >= 2 else None

    n = len(high_support_ids)
    cluster_cohesion = 1.0
    if n > 1:
        internal = sum(
            1
            for e in edges
            if e.from_ in high_support_ids and e.to in high_support_ids and e.type in _REINFORCING
        )
        cluster_cohesion = internal / (n * (n - 1))

    total_coherence = 0.0
    weighted_claims = 0
    for component in components:
        size = len(component)
        if size < 2:
            continue
        members = set(component)
        internal_edges = sum(1 for e in edges if e.from_ in members and e.to in members)
        coherence = internal_edges / (size * (size - 1))
        avg_support = sum(support_ratios.get(cid, 0.0) for cid in component) / size
        total_coherence += coherence * avg_support * size
        weighted_claims += size
    local_coherence = total_coherence / weighted_claims if weighted_claims else 0.0

    return GraphAnalysis(
        component_count=len(components),
        components=components,
        longest_chain=chain,
        chain_count=chain_count,
        hub_claim=hub_claim,
        hub_dominance=hub_dominance,
        articulation_points=articulation_points(claim_ids, edges),
        cluster_cohesion=cluster_cohesion,
        local_coherence=local_coherence,
    )
