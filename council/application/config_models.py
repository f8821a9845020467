"""Engine configuration models.

Config structure (``.council/config.yml``):
    engine:
      min_witnesses: 2
      single_call_timeout: 90
      default_mapper: claude
      cognitive_modes: [explore]
      provider_limits:
        chatgpt: {max_input_chars: 40000, warn_threshold: 30000}
      streaming:
        append_prefix_ratio: 0.7
      analysis:
        keystone_percentile: 0.2

Every key is optional; omitted keys keep their defaults.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from council.domain.analysis.thresholds import AnalysisConfig
from council.domain.constants import DEFAULT_SINGLE_CALL_TIMEOUT, MIN_WITNESSES
from council.domain.providers.provider_limits import ProviderLimit, ProviderLimits


class StreamingConfig(BaseModel):
    """Thresholds for delta reconciliation between text snapshots."""

    model_config = ConfigDict(extra="forbid")

    append_prefix_ratio: float = 0.7
    regression_chars: int = 200
    regression_ratio: float = 0.05
    warning_limit: int = 2
    warning_cooldown_seconds: float = 5.0

    @field_validator("append_prefix_ratio", "regression_ratio")
    @classmethod
    def _ratio_in_unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("ratio must be between 0 and 1")
        return v


class ProviderLimitOverride(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_input_chars: int
    warn_threshold: int | None = None

    @model_validator(mode="after")
    def _warn_below_max(self) -> "ProviderLimitOverride":
        if self.max_input_chars < 1:
            raise ValueError("max_input_chars must be >= 1")
        if self.warn_threshold is not None and self.warn_threshold > self.max_input_chars:
            raise ValueError("warn_threshold must not exceed max_input_chars")
        return self


class EngineConfig(BaseModel):
    """Top-level engine configuration."""

    model_config = ConfigDict(extra="forbid")

    min_witnesses: int = MIN_WITNESSES
    single_call_timeout: float = DEFAULT_SINGLE_CALL_TIMEOUT
    default_mapper: str | None = None
    cognitive_modes: list[str] = Field(default_factory=list)
    provider_limits: dict[str, ProviderLimitOverride] = Field(default_factory=dict)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)

    @field_validator("min_witnesses")
    @classmethod
    def _min_witnesses_ge_1(cls, v: int) -> int:
        if v < 1:
            raise ValueError("min_witnesses must be >= 1")
        return v

    @field_validator("single_call_timeout")
    @classmethod
    def _timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("single_call_timeout must be positive")
        return v

    def build_provider_limits(self) -> ProviderLimits:
        """Static limit table with configured overrides applied."""
        overrides = {
            pid: ProviderLimit(
                max_input_chars=o.max_input_chars,
                warn_threshold=o.warn_threshold
                if o.warn_threshold is not None
                else o.max_input_chars,
            )
            for pid, o in self.provider_limits.items()
        }
        return ProviderLimits(overrides)
