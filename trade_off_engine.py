#!/usr/bin/env python3
"""
Strategy Comparison Engine - Trade-Off Summary
===============================================
Turns the per-metric deltas of two strategy runs into a plain-language
verdict: which strategy is better, the largest differences between them,
and what to do about it.

Pipeline:
  1. Score     -> weighted points per metric to "previous" or "current"
  2. Assess    -> strict majority of points; ties are "similar"
  3. Rank      -> one sentence per non-neutral metric, largest first, top N
  4. Phrase    -> headline + recommendation keyed off the assessment

Weights, the probability magnitude scale and the list length come from
config.yaml (see schemas.ComparisonConfig).
"""

import logging
import math
from typing import NamedTuple, Optional, Union

import numpy as np
import pandas as pd

from delta_calculations import (
    compute_delta_frame,
    format_currency_compact,
    format_percent,
)
from schemas import ComparisonConfig, ComparisonMetrics, DeltaRecord, TradeOffSummaryData

logger = logging.getLogger(__name__)


class MetricRule(NamedTuple):
    """How one tracked metric is scored and described."""
    metric: str
    higher_is_better: bool
    magnitude_source: str     # "absolute" | "percent_change"
    unit: str                 # "currency" | "percent"
    template: str
    probability: bool = False


# Table order is also the tie order when two differences have equal magnitude
METRIC_RULES = (
    MetricRule("final_value", True, "absolute", "currency",
               "{better} produces {amount} higher median terminal value"),
    MetricRule("success_rate", True, "percent_change", "percent",
               "{better} has {amount} higher success rate"),
    MetricRule("margin_call_probability", False, "absolute", "percent",
               "{better} has {amount} lower margin call risk", probability=True),
    MetricRule("cagr", True, "percent_change", "percent",
               "{better} achieves {amount} higher CAGR"),
)

METRIC_COLS = [r.metric for r in METRIC_RULES]
REQUIRED_METRICS = ("final_value", "success_rate")

NO_DATA_SUMMARY = TradeOffSummaryData(
    headline="No comparison data available",
    assessment="similar",
    key_differences=[],
    recommendation="Generate both simulations to see comparison.",
)

# Shown by the presentation layer when key_differences is empty
PLACEHOLDER_DIFFERENCE = "Strategies are nearly identical"


class KeyDifference(NamedTuple):
    metric: str
    text: str
    magnitude: float


# =========================================================================
# 1-2. Scoring and assessment
# =========================================================================
def _favors_current(delta: DeltaRecord, rule: MetricRule) -> bool:
    return (delta.direction == "up") == rule.higher_is_better


def _signals(metrics: ComparisonMetrics):
    """Yield (rule, delta) for every present, non-neutral tracked metric."""
    for rule in METRIC_RULES:
        delta = getattr(metrics, rule.metric, None)
        if delta is None or delta.direction == "neutral":
            continue
        yield rule, delta


def score_strategies(metrics: ComparisonMetrics,
                     cfg: Optional[ComparisonConfig] = None) -> tuple[float, float]:
    """Return (previous_score, current_score)."""
    cfg = cfg or ComparisonConfig()
    previous_score = 0.0
    current_score = 0.0
    for rule, delta in _signals(metrics):
        weight = getattr(cfg.scoring, rule.metric)
        if _favors_current(delta, rule):
            current_score += weight
        else:
            previous_score += weight
    return previous_score, current_score


def assess(previous_score: float, current_score: float) -> str:
    if current_score > previous_score:
        return "current-better"
    if previous_score > current_score:
        return "previous-better"
    return "similar"


# =========================================================================
# 3. Key differences
# =========================================================================
def _format_amount(value: float, rule: MetricRule, cfg: ComparisonConfig) -> str:
    if rule.unit == "currency":
        return format_currency_compact(value, cfg.output.currency_symbol)
    return format_percent(value)


def rank_key_differences(metrics: ComparisonMetrics,
                         previous_name: str,
                         current_name: str,
                         cfg: Optional[ComparisonConfig] = None) -> list[KeyDifference]:
    """Describe every non-neutral metric, largest magnitude first.

    Probability-based magnitudes are multiplied by
    ``ranking.probability_magnitude_scale`` before ranking so a few
    percentage points of margin call risk can outrank relative changes in
    the other rates. The list is cut to ``ranking.max_key_differences``.
    """
    cfg = cfg or ComparisonConfig()
    candidates = []
    for rule, delta in _signals(metrics):
        better = current_name if _favors_current(delta, rule) else previous_name
        amount = abs(getattr(delta, rule.magnitude_source))
        magnitude = amount
        if rule.probability:
            magnitude = amount * cfg.ranking.probability_magnitude_scale
        if math.isnan(magnitude):
            magnitude = 0.0
        text = rule.template.format(better=better,
                                    amount=_format_amount(amount, rule, cfg))
        candidates.append(KeyDifference(rule.metric, text, magnitude))

    candidates.sort(key=lambda d: d.magnitude, reverse=True)
    return candidates[:cfg.ranking.max_key_differences]


# =========================================================================
# 4. Headline and recommendation
# =========================================================================
def _headline(assessment: str, previous_name: str, current_name: str) -> str:
    if assessment == "current-better":
        return f"{current_name} strategy outperforms"
    if assessment == "previous-better":
        return f"{previous_name} strategy outperforms"
    return "Strategies produce similar outcomes"


def _recommendation(assessment: str, previous_name: str, current_name: str) -> str:
    if assessment == "current-better":
        return (f"The {current_name} strategy offers better risk-adjusted returns. "
                "Consider adopting these parameters.")
    if assessment == "previous-better":
        return (f"The {previous_name} strategy appears more favorable. "
                f"Review what changed before switching to {current_name}.")
    return ("Both strategies produce comparable results. "
            "Your choice may depend on personal risk tolerance.")


def generate_summary(metrics: Union[ComparisonMetrics, dict, None],
                     previous_name: str = "Previous",
                     current_name: str = "Current",
                     cfg: Optional[ComparisonConfig] = None,
                     log: Optional[logging.Logger] = None) -> TradeOffSummaryData:
    """Summarize the trade-offs between two strategy runs.

    ``metrics`` of None means no comparison has been run yet and yields the
    fixed no-data summary. ``log`` lets the caller route the scoring trace
    to its own run logger.
    """
    log = log or logger
    if metrics is None:
        return NO_DATA_SUMMARY.model_copy(deep=True)
    if isinstance(metrics, dict):
        metrics = ComparisonMetrics.model_validate(metrics)
    cfg = cfg or ComparisonConfig()

    previous_score, current_score = score_strategies(metrics, cfg)
    assessment = assess(previous_score, current_score)
    differences = rank_key_differences(metrics, previous_name, current_name, cfg)
    log.debug(f"Scored {previous_name}={previous_score} vs {current_name}={current_score} "
              f"-> {assessment} ({len(differences)} key differences)")

    return TradeOffSummaryData(
        headline=_headline(assessment, previous_name, current_name),
        assessment=assessment,
        key_differences=[d.text for d in differences],
        recommendation=_recommendation(assessment, previous_name, current_name),
    )


# =========================================================================
# 5. Batch comparison
# =========================================================================
def _row_name(df: pd.DataFrame, i: int, col: str, default: str) -> str:
    if col not in df.columns or pd.isna(df.at[i, col]):
        return default
    name = str(df.at[i, col]).strip()
    return name or default


def compare_frame(df: pd.DataFrame,
                  cfg: Optional[ComparisonConfig] = None,
                  log: Optional[logging.Logger] = None) -> pd.DataFrame:
    """Run one comparison per row of a scenario table.

    Expects ``{metric}_prev`` / ``{metric}_curr`` columns for every metric
    in METRIC_COLS that should be compared; final_value and success_rate
    are required. A NaN on either side of an optional metric means the
    metric is absent for that row. Optional ``scenario``, ``previous_name``
    and ``current_name`` columns are carried through.
    """
    cfg = cfg or ComparisonConfig()
    log = log or logger

    missing = [f"{m}_{side}" for m in REQUIRED_METRICS for side in ("prev", "curr")
               if f"{m}_{side}" not in df.columns]
    if missing:
        raise ValueError(f"Scenario table is missing required columns: {missing}")

    df = df.reset_index(drop=True)
    deltas = {}
    for metric in METRIC_COLS:
        prev_col, curr_col = f"{metric}_prev", f"{metric}_curr"
        if prev_col not in df.columns or curr_col not in df.columns:
            continue
        frame = compute_delta_frame(df[prev_col], df[curr_col],
                                    cfg.deltas.zero_base_policy,
                                    cfg.deltas.neutral_threshold)
        present = df[prev_col].notna() & df[curr_col].notna()
        if metric in REQUIRED_METRICS and not present.all():
            bad = df.index[~present].tolist()
            raise ValueError(f"Required metric '{metric}' is missing in rows {bad}")
        deltas[metric] = (frame, present.to_numpy())

    rows = []
    for i in range(len(df)):
        bundle = {}
        for metric, (frame, present) in deltas.items():
            if present[i]:
                bundle[metric] = DeltaRecord(
                    absolute=float(frame.at[i, "absolute"]),
                    percent_change=float(frame.at[i, "percent_change"]),
                    direction=str(frame.at[i, "direction"]),
                )
        metrics = ComparisonMetrics(**bundle)
        previous_name = _row_name(df, i, "previous_name", cfg.names.previous)
        current_name = _row_name(df, i, "current_name", cfg.names.current)

        previous_score, current_score = score_strategies(metrics, cfg)
        summary = generate_summary(metrics, previous_name, current_name, cfg, log)
        rows.append({
            "scenario": df.at[i, "scenario"] if "scenario" in df.columns else i,
            "previous_score": previous_score,
            "current_score": current_score,
            "assessment": summary.assessment,
            "headline": summary.headline,
            "key_differences": "; ".join(summary.key_differences),
            "recommendation": summary.recommendation,
        })

    out = pd.DataFrame(rows, columns=["scenario", "previous_score", "current_score",
                                      "assessment", "headline", "key_differences",
                                      "recommendation"])
    n_current = int(np.sum(out["assessment"] == "current-better"))
    log.info(f"Compared {len(out)} scenarios ({n_current} favour current)")
    return out
