from typing import Any, Literal

from pydantic import BaseModel, Field


class BaseOutput(BaseModel):
    schema_version: int = 1
    command: Literal["analyze", "limits", "config"]
    exit_code: int
    error: str | None = None


class ShapeSummary(BaseModel):
    """Primary problem-structure pattern of a claim graph."""

    primary_pattern: str
    confidence: float
    evidence: list[str] = Field(default_factory=list)


class AnalyzeOutput(BaseOutput):
    command: Literal["analyze"] = "analyze"
    claim_count: int = 0
    edge_count: int = 0
    completed_providers: list[str] = Field(default_factory=list)
    # None when the graph has no usable claims
    consensus: dict[str, Any] | None = None
    shape: ShapeSummary | None = None
    ratios: dict[str, float] | None = None
    analysis: dict[str, Any] | None = None


class LimitEntry(BaseModel):
    provider_id: str
    max_input_chars: int
    warn_threshold: int


class LimitsOutput(BaseOutput):
    command: Literal["limits"] = "limits"
    limits: list[LimitEntry] = Field(default_factory=list)


class ConfigOutput(BaseOutput):
    command: Literal["config"] = "config"
    config: dict[str, Any] | None = None
