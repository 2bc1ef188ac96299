#!/usr/bin/env python3
"""
Strategy Comparison Engine - Delta Calculations
================================================
Computes metric deltas between two simulation runs ("previous" vs
"current") and formats them for display.

Percent change uses the magnitude of the baseline, so the sign of the
percent change always follows the sign of the absolute change, even for
negative baselines. A zero baseline has no defined percent change; the
result is chosen by ``zero_base_policy``:

    zero      ->  0.0                    (default)
    infinity  -> +inf / -inf by direction, 0.0 when unchanged
    nan       ->  nan
"""

import logging
import math
import warnings
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import numpy as np
import pandas as pd

from schemas import (
    ComparisonConfig,
    ComparisonMetrics,
    DeltaRecord,
    SimulationOutput,
    SimulationStatistics,
)

logger = logging.getLogger(__name__)

ZERO_BASE_POLICIES = ("zero", "infinity", "nan")

# Compact notation units, largest first
_COMPACT_UNITS = ((1e12, "T"), (1e9, "B"), (1e6, "M"), (1e3, "K"))

DIRECTION_ARROWS = {"up": "↑", "down": "↓", "neutral": "→"}
DIRECTION_SIGNS = {"up": "+", "down": "-", "neutral": ""}


# =========================================================================
# A. Single delta
# =========================================================================
def _zero_base_percent(absolute: float, policy: str) -> float:
    if policy == "zero":
        return 0.0
    if policy == "infinity":
        if absolute == 0:
            return 0.0
        return math.copysign(math.inf, absolute)
    if policy == "nan":
        return math.nan
    raise ValueError(
        f"Unknown zero_base_policy '{policy}' (expected one of {ZERO_BASE_POLICIES})"
    )


def _direction(absolute: float, neutral_threshold: float) -> str:
    if absolute > neutral_threshold:
        return "up"
    if absolute < -neutral_threshold:
        return "down"
    return "neutral"


def compute_delta(previous: float, current: float,
                  zero_base_policy: str = "zero",
                  neutral_threshold: float = 0.0) -> DeltaRecord:
    """Compare a previous value to a current value.

    ``absolute`` is exactly ``current - previous``. ``direction`` is ``up``
    when the change exceeds ``neutral_threshold``, ``down`` when it is below
    its negative, otherwise ``neutral``; the default threshold of 0 gives
    the strict sign rule.
    """
    absolute = current - previous
    if previous != 0:
        percent_change = (absolute / abs(previous)) * 100
    else:
        percent_change = _zero_base_percent(absolute, zero_base_policy)
    return DeltaRecord(
        absolute=absolute,
        percent_change=percent_change,
        direction=_direction(absolute, neutral_threshold),
    )


def compute_delta_frame(previous, current,
                        zero_base_policy: str = "zero",
                        neutral_threshold: float = 0.0) -> pd.DataFrame:
    """Vectorized ``compute_delta`` over two aligned arrays.

    Returns a DataFrame with absolute, percent_change and direction columns.
    Rows where either side is NaN come back with NaN values and a neutral
    direction; callers decide whether such rows count as absent.
    """
    if zero_base_policy not in ZERO_BASE_POLICIES:
        raise ValueError(
            f"Unknown zero_base_policy '{zero_base_policy}' "
            f"(expected one of {ZERO_BASE_POLICIES})"
        )
    prev = np.asarray(previous, dtype=float)
    curr = np.asarray(current, dtype=float)
    if prev.shape != curr.shape:
        raise ValueError(f"Shape mismatch: previous {prev.shape} vs current {curr.shape}")

    absolute = curr - prev
    if zero_base_policy == "zero":
        zero_base = np.zeros_like(absolute)
    elif zero_base_policy == "infinity":
        zero_base = np.where(absolute == 0, 0.0, np.copysign(np.inf, absolute))
    else:
        zero_base = np.full_like(absolute, np.nan)

    with np.errstate(divide="ignore", invalid="ignore"):
        percent_change = np.where(prev != 0, (absolute / np.abs(prev)) * 100, zero_base)

    direction = np.select(
        [absolute > neutral_threshold, absolute < -neutral_threshold],
        ["up", "down"],
        default="neutral",
    )
    return pd.DataFrame({
        "absolute": absolute,
        "percent_change": percent_change,
        "direction": direction,
    })


# =========================================================================
# B. Simulation outputs -> ComparisonMetrics
# =========================================================================
def summarize_terminal_values(values, initial_value: float) -> SimulationStatistics:
    """Derive aggregate statistics from raw terminal values.

    successRate is the percentage of iterations ending strictly above the
    initial portfolio value. stddev is the sample standard
    deviation.
    """
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        raise ValueError("Cannot summarize an empty set of terminal values")
    n_bad = int((~np.isfinite(arr)).sum())
    if n_bad:
        warnings.warn(f"Dropping {n_bad} non-finite terminal values")
        arr = arr[np.isfinite(arr)]
        if arr.size == 0:
            raise ValueError("No finite terminal values to summarize")
    return SimulationStatistics(
        mean=float(np.mean(arr)),
        median=float(np.median(arr)),
        stddev=float(np.std(arr, ddof=1)) if arr.size > 1 else 0.0,
        success_rate=float((arr > initial_value).mean() * 100),
    )


def _statistics(output: SimulationOutput) -> SimulationStatistics:
    if output.statistics is not None:
        return output.statistics
    return summarize_terminal_values(output.terminal_values, output.initial_value)


def _final_cumulative_probability(output: SimulationOutput) -> float:
    if not output.margin_call_stats:
        return 0.0
    return output.margin_call_stats[-1].cumulative_probability


def compute_comparison_metrics(previous: SimulationOutput,
                               current: SimulationOutput,
                               cfg: Optional[ComparisonConfig] = None) -> ComparisonMetrics:
    """Build the per-metric delta bundle for two simulation runs.

    CAGR is compared only when both runs report it. Margin call probability
    is compared only when both runs carry margin call stats, using the
    cumulative probability of the final year.
    """
    cfg = cfg or ComparisonConfig()
    policy = cfg.deltas.zero_base_policy
    threshold = cfg.deltas.neutral_threshold

    prev_stats = _statistics(previous)
    curr_stats = _statistics(current)

    metrics = {
        "final_value": compute_delta(prev_stats.median, curr_stats.median,
                                     policy, threshold),
        "success_rate": compute_delta(prev_stats.success_rate, curr_stats.success_rate,
                                      policy, threshold),
    }

    if prev_stats.cagr is not None and curr_stats.cagr is not None:
        metrics["cagr"] = compute_delta(prev_stats.cagr, curr_stats.cagr,
                                        policy, threshold)

    if previous.margin_call_stats is not None and current.margin_call_stats is not None:
        metrics["margin_call_probability"] = compute_delta(
            _final_cumulative_probability(previous),
            _final_cumulative_probability(current),
            policy, threshold,
        )

    logger.debug("Comparison metrics built: %s", sorted(metrics))
    return ComparisonMetrics(**metrics)


# =========================================================================
# C. Formatting
# =========================================================================
def _round1(value: float) -> Decimal:
    return Decimal(repr(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def _trim(d: Decimal) -> str:
    s = f"{d:.1f}"
    return s[:-2] if s.endswith(".0") else s


def format_compact_number(value: float) -> str:
    """Compact notation with at most one decimal: 1234567 -> '1.2M'."""
    if not math.isfinite(value):
        return str(value)
    sign = "-" if value < 0 else ""
    mag = abs(value)
    # Walk up from the smallest unit so 999_950 rolls over to 1M, not 1000K
    scaled, suffix = _round1(mag), ""
    for size, unit in reversed(_COMPACT_UNITS):
        if mag >= size or scaled >= 1000:
            scaled, suffix = _round1(mag / size), unit
    return f"{sign}{_trim(scaled)}{suffix}"


def format_currency_compact(value: float, symbol: str = "$") -> str:
    """Compact currency: 200000 -> '$200K', -1.25e6 -> '-$1.3M'."""
    text = format_compact_number(value)
    if text.startswith("-"):
        return f"-{symbol}{text[1:]}"
    return f"{symbol}{text}"


def format_percent(value: float) -> str:
    if math.isnan(value):
        return "n/a"
    if math.isinf(value):
        return "∞%"
    # Half-up: 6.25 -> "6.3%"
    return f"{_round1(value):.1f}%"


def format_delta(delta: DeltaRecord, fmt: str = "number", symbol: str = "$") -> str:
    """Signed display label for one delta, e.g. '+$200K (+20.0%) ↑'."""
    mag = abs(delta.absolute)
    if fmt == "currency":
        change = format_currency_compact(mag, symbol)
    elif fmt == "percent":
        change = format_percent(mag)
    else:
        change = format_compact_number(mag)
    sign = DIRECTION_SIGNS[delta.direction]
    pct = format_percent(abs(delta.percent_change))
    return f"{sign}{change} ({sign}{pct}) {DIRECTION_ARROWS[delta.direction]}"
