"""Tunable constants for claim-graph analytics.

Defaults reproduce the calibrated behaviour; hosts override them through
the engine config.
"""

from pydantic import BaseModel, ConfigDict, Field


class RoleWeights(BaseModel):
    model_config = ConfigDict(extra="forbid")

    challenger: float = 4.0
    anchor: float = 2.0
    branch: float = 1.0
    supplement: float = 0.5
    default: float = 1.0


class ConnectivityWeights(BaseModel):
    model_config = ConfigDict(extra="forbid")

    prerequisite_out: float = 2.0
    prerequisite_in: float = 1.0
    conflict: float = 1.5
    any_edge: float = 0.25


class EdgeThresholds(BaseModel):
    """Minimum edge counts, scaled with claim count."""

    model_config = ConfigDict(extra="forbid")

    minimum: int = 2
    keystone_ratio: float = 0.1
    linear_ratio: float = 0.08
    mid_components_ratio: float = 0.5


class SettledWeights(BaseModel):
    model_config = ConfigDict(extra="forbid")

    concentration: float = 0.40
    alignment: float = 0.30
    low_tension: float = 0.20
    coherence: float = 0.10


class LinearWeights(BaseModel):
    model_config = ConfigDict(extra="forbid")

    depth: float = 0.50
    enough_edges: float = 0.30
    connectedness: float = 0.20


class KeystoneWeights(BaseModel):
    model_config = ConfigDict(extra="forbid")

    hub_dominance: float = 0.50
    hub_share: float = 0.30
    concentration: float = 0.20


class ContestedWeights(BaseModel):
    model_config = ConfigDict(extra="forbid")

    high_support_conflict: float = 0.40
    tension: float = 0.30
    misalignment: float = 0.20
    any_conflict: float = 0.10


class TradeoffWeights(BaseModel):
    model_config = ConfigDict(extra="forbid")

    any_tradeoff: float = 0.35
    tension: float = 0.30
    dispersion: float = 0.25
    tradeoffs_dominate: float = 0.10


class DimensionalWeights(BaseModel):
    model_config = ConfigDict(extra="forbid")

    coherence: float = 0.35
    depth: float = 0.25
    alignment: float = 0.20
    mid_components: float = 0.20


class ExploratoryWeights(BaseModel):
    model_config = ConfigDict(extra="forbid")

    incoherence: float = 0.35
    dispersion: float = 0.30
    sparse_edges: float = 0.20
    low_tension: float = 0.15
    low_tension_below: float = 0.15


class PatternWeights(BaseModel):
    """Weights of the linear combination scored for each pattern.

    Boolean terms (``enough_edges``, ``any_conflict`` and so on) contribute
    their full weight when the condition holds.
    """

    model_config = ConfigDict(extra="forbid")

    settled: SettledWeights = Field(default_factory=SettledWeights)
    linear: LinearWeights = Field(default_factory=LinearWeights)
    keystone: KeystoneWeights = Field(default_factory=KeystoneWeights)
    contested: ContestedWeights = Field(default_factory=ContestedWeights)
    tradeoff: TradeoffWeights = Field(default_factory=TradeoffWeights)
    dimensional: DimensionalWeights = Field(default_factory=DimensionalWeights)
    exploratory: ExploratoryWeights = Field(default_factory=ExploratoryWeights)


class ConfidenceWeights(BaseModel):
    """confidence = base + margin * (best - runner_up) + magnitude * best"""

    model_config = ConfigDict(extra="forbid")

    base: float = 0.35
    margin: float = 0.4
    magnitude: float = 0.25


class ConfidencePenalties(BaseModel):
    model_config = ConfigDict(extra="forbid")

    weak_signal: float = 0.3
    fragile_bridge: float = 0.20
    per_hidden_conflict: float = 0.10
    hidden_conflict_cap: float = 0.20
    disconnected_consensus: float = 0.15
    disconnected_cohesion_below: float = 0.2
    disconnected_concentration_above: float = 0.5


class AnalysisConfig(BaseModel):
    """Percentile thresholds and weights used by structural analysis.

    Percentiles are fractions of the live distribution: ``0.3`` on a
    "top" flag means the top 30% of claims.
    """

    model_config = ConfigDict(extra="forbid")

    top_claims_ratio: float = 0.3
    high_support_percentile: float = 0.3
    inversion_support_percentile: float = 0.3
    inversion_leverage_percentile: float = 0.25
    keystone_percentile: float = 0.2
    evidence_gap_percentile: float = 0.2
    outlier_percentile: float = 0.2

    support_weight_multiplier: float = 2.0
    chain_root_bonus: float = 2.0
    role_weights: RoleWeights = Field(default_factory=RoleWeights)
    connectivity_weights: ConnectivityWeights = Field(default_factory=ConnectivityWeights)

    symmetric_tension_delta: float = 0.15
    shape_score_floor: float = 0.20
    floor_confidence: float = 0.15
    min_confidence: float = 0.10

    edge_thresholds: EdgeThresholds = Field(default_factory=EdgeThresholds)
    pattern_weights: PatternWeights = Field(default_factory=PatternWeights)
    confidence: ConfidenceWeights = Field(default_factory=ConfidenceWeights)
    penalties: ConfidencePenalties = Field(default_factory=ConfidencePenalties)
