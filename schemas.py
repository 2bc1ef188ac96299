#!/usr/bin/env python3
"""
Typed schemas for the Strategy Comparison Engine.

Provides Pydantic models for data validation at the engine boundaries.
These schemas are documentation-as-code: they define what the comparison
expects (simulation outputs, per-metric deltas) and produces (the
trade-off summary), making assumptions explicit and testable.

JSON field names follow the simulator's camelCase wire format; Python code
uses the snake_case attribute names. Both are accepted on input.
"""

from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Direction = Literal["up", "down", "neutral"]
Assessment = Literal["previous-better", "current-better", "similar"]
ZeroBasePolicy = Literal["zero", "infinity", "nan"]


# =========================================================================
# Deltas
# =========================================================================

class DeltaRecord(BaseModel):
    """Result of comparing a previous value to a current value for one metric."""
    absolute: float
    percent_change: float = Field(alias="percentChange")
    direction: Direction

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class ComparisonMetrics(BaseModel):
    """Named bundle of per-metric deltas between two strategy runs.

    ``margin_call_probability`` is only present when both runs were
    leveraged; ``cagr`` only when both runs report it. ``max_drawdown`` is
    carried for display but never scored. Any other metric may be attached
    as an extra field and is ignored by the scorer.
    """
    final_value: DeltaRecord = Field(alias="finalValue")
    success_rate: DeltaRecord = Field(alias="successRate")
    margin_call_probability: Optional[DeltaRecord] = Field(None, alias="marginCallProbability")
    cagr: Optional[DeltaRecord] = None
    max_drawdown: Optional[DeltaRecord] = Field(None, alias="maxDrawdown")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class TradeOffSummaryData(BaseModel):
    """Plain-language verdict produced by the trade-off engine."""
    headline: str
    assessment: Assessment
    key_differences: list[str] = Field(default_factory=list, alias="keyDifferences")
    recommendation: str

    model_config = ConfigDict(populate_by_name=True)


# =========================================================================
# Simulation outputs (upstream shape)
# =========================================================================

class SimulationStatistics(BaseModel):
    """Aggregate statistics of one Monte Carlo run."""
    mean: float = 0.0
    median: float
    stddev: float = 0.0
    success_rate: float = Field(alias="successRate", ge=0, le=100)
    cagr: Optional[float] = None

    model_config = ConfigDict(populate_by_name=True)


class MarginCallStat(BaseModel):
    year: int = Field(ge=0)
    probability: float = Field(0.0, ge=0, le=100)
    cumulative_probability: float = Field(alias="cumulativeProbability", ge=0, le=100)

    model_config = ConfigDict(populate_by_name=True)


class SimulationOutput(BaseModel):
    """Schema for a saved simulation result file.

    A file may carry ``statistics`` directly or only the raw
    ``terminalValues``; in the latter case the statistics are derived from
    the values (see ``delta_calculations.summarize_terminal_values``).
    """
    statistics: Optional[SimulationStatistics] = None
    terminal_values: Optional[list[float]] = Field(None, alias="terminalValues")
    initial_value: Optional[float] = Field(None, alias="initialValue")
    margin_call_stats: Optional[list[MarginCallStat]] = Field(None, alias="marginCallStats")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @model_validator(mode="after")
    def statistics_or_values(self) -> "SimulationOutput":
        if self.statistics is None:
            if not self.terminal_values:
                raise ValueError(
                    "Simulation output needs either statistics or terminalValues"
                )
            if self.initial_value is None:
                raise ValueError(
                    "initialValue is required to derive statistics from terminalValues"
                )
        return self


# =========================================================================
# ComparisonConfig: top-level config schema
# =========================================================================

class ComparisonConfig(BaseModel):
    """Schema for validated config.yaml contents."""

    class ScoringWeights(BaseModel):
        final_value: float = 2
        success_rate: float = 1
        margin_call_probability: float = 1
        cagr: float = 1

        @field_validator("final_value", "success_rate",
                         "margin_call_probability", "cagr")
        @classmethod
        def weight_non_negative(cls, v: float) -> float:
            if v < 0:
                raise ValueError(f"Weight must be >= 0, got {v}")
            return v

    class RankingConfig(BaseModel):
        probability_magnitude_scale: float = Field(100.0, gt=0)
        max_key_differences: int = Field(4, ge=0)

    class DeltaConfig(BaseModel):
        zero_base_policy: ZeroBasePolicy = "zero"
        neutral_threshold: float = Field(0.0, ge=0)

    class NamesConfig(BaseModel):
        previous: str = "Previous"
        current: str = "Current"

        @field_validator("previous", "current")
        @classmethod
        def name_not_blank(cls, v: str) -> str:
            if not v.strip():
                raise ValueError("Strategy display name must not be blank")
            return v

    class OutputConfig(BaseModel):
        runs_dir: str = "runs"
        currency_symbol: str = "$"
        save_trace: bool = True

    scoring: ScoringWeights = ScoringWeights()
    ranking: RankingConfig = RankingConfig()
    deltas: DeltaConfig = DeltaConfig()
    names: NamesConfig = NamesConfig()
    output: OutputConfig = OutputConfig()
