"""Consensus gate and problem-structure models."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class GateReason(str, Enum):
    MONOCULTURE = "monoculture"
    NO_ANCHOR = "no_anchor"
    HAS_ANCHOR_OUTLIER = "has_anchor_outlier"


class ApproachStat(BaseModel):
    model_config = ConfigDict(frozen=True)

    claim_id: str
    label: str
    supporters: list[str]
    support_count: int
    support_ratio: float


class ConsensusStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_models_completed: int
    approaches_count: int
    max_supporters: int
    approaches: list[ApproachStat] = Field(default_factory=list)


class ConsensusGate(BaseModel):
    """Decision whether to skip the refiner and antagonist phases."""

    model_config = ConfigDict(frozen=True)

    consensus_only: bool
    reason: GateReason
    stats: ConsensusStats
    skip_refiner: bool = False
    skip_antagonist: bool = False


class ShapePattern(str, Enum):
    SETTLED = "settled"
    CONTESTED = "contested"
    LINEAR = "linear"
    KEYSTONE = "keystone"
    TRADEOFF = "tradeoff"
    DIMENSIONAL = "dimensional"
    EXPLORATORY = "exploratory"


class ProblemStructure(BaseModel):
    """Classification of how agreement and disagreement are shaped."""

    model_config = ConfigDict(frozen=True)

    primary_pattern: ShapePattern
    confidence: float
    evidence: list[str] = Field(default_factory=list)
    scores: dict[str, float] = Field(default_factory=dict)
    implications: dict[str, str] = Field(default_factory=dict)
