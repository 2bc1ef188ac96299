#!/usr/bin/env python3
"""
Strategy Comparison Engine - Command-Line Runner
=================================================
Compare two saved simulation results and print the trade-off summary:

    python run_comparison.py --previous baseline.json --current leveraged.json \\
        --previous-name Baseline --current-name Leveraged
    python run_comparison.py --previous a.json --current b.json --json
    python run_comparison.py --batch scenarios.csv

Every run gets a directory under runs/{run_id}/ holding the config
snapshot, a JSON-lines run.log, the summary (or comparisons.csv for a
batch) and an event trace.
"""

import argparse
import json
import sys
import time
from pathlib import Path

import pandas as pd
import yaml
from pydantic import ValidationError

from delta_calculations import compute_comparison_metrics, format_delta
from instrumentation import EventLog, trace_event
from run_context import RunContext
from schemas import ComparisonConfig, ComparisonMetrics, SimulationOutput, TradeOffSummaryData
from trade_off_engine import PLACEHOLDER_DIFFERENCE, compare_frame, generate_summary

ROOT = Path(__file__).resolve().parent
CONFIG_PATH = ROOT / "config.yaml"

EXIT_OK = 0
EXIT_INVALID = 2

# (metric, label, format, scale); CAGR is stored as a fraction
METRIC_CHANGE_ROWS = [
    ("final_value", "Final Value", "currency", 1),
    ("success_rate", "Success Rate", "percent", 1),
    ("cagr", "CAGR", "percent", 100),
    ("margin_call_probability", "Margin Call Risk", "percent", 1),
]


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------
def load_config(path: str | Path = CONFIG_PATH) -> tuple[dict, ComparisonConfig]:
    """Load config.yaml and validate it. Returns (raw dict, validated model)."""
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}
    return raw, ComparisonConfig.model_validate(raw)


def load_simulation(path: str | Path) -> SimulationOutput:
    """Load one saved simulation result (JSON)."""
    with open(path, "r", encoding="utf-8") as f:
        return SimulationOutput.model_validate(json.load(f))


# ---------------------------------------------------------------------------
# CLI argument parsing
# ---------------------------------------------------------------------------
def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Compare two portfolio strategy simulations")
    p.add_argument("--previous", type=str, default="",
                   help="Simulation result JSON for the baseline strategy")
    p.add_argument("--current", type=str, default="",
                   help="Simulation result JSON for the new strategy")
    p.add_argument("--previous-name", type=str, default=None,
                   help="Display name of the baseline strategy")
    p.add_argument("--current-name", type=str, default=None,
                   help="Display name of the new strategy")
    p.add_argument("--batch", type=str, default="",
                   help="CSV of scenario pairs ({metric}_prev / {metric}_curr columns)")
    p.add_argument("--config", type=str, default=str(CONFIG_PATH),
                   help="Path to config.yaml")
    p.add_argument("--json", action="store_true",
                   help="Print the summary as JSON instead of text")
    args = p.parse_args(argv)
    if not args.batch and not (args.previous and args.current):
        p.error("either --batch or both --previous and --current are required")
    return args


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------
def format_summary(summary: TradeOffSummaryData) -> str:
    lines = [summary.headline, ""]
    for diff in summary.key_differences or [PLACEHOLDER_DIFFERENCE]:
        lines.append(f"  • {diff}")
    lines += ["", summary.recommendation]
    return "\n".join(lines)


def format_metric_changes(metrics: ComparisonMetrics, symbol: str = "$") -> str:
    """Per-metric change table; metrics absent from the bundle are skipped."""
    lines = ["Key Metric Changes"]
    for metric, label, fmt, scale in METRIC_CHANGE_ROWS:
        delta = getattr(metrics, metric)
        if delta is None:
            continue
        if scale != 1:
            delta = delta.model_copy(update={"absolute": delta.absolute * scale})
        lines.append(f"  {label:<18}{format_delta(delta, fmt, symbol)}")
    return "\n".join(lines)


def run_pair(args, cfg: ComparisonConfig, ctx: RunContext,
             events: EventLog) -> tuple[ComparisonMetrics, TradeOffSummaryData]:
    previous_name = args.previous_name or cfg.names.previous
    current_name = args.current_name or cfg.names.current

    with trace_event(events, "LOAD", "Load simulation results",
                     details=f"{args.previous}; {args.current}"):
        previous = load_simulation(args.previous)
        current = load_simulation(args.current)

    with trace_event(events, "CALC", "Compute comparison metrics"):
        metrics = compute_comparison_metrics(previous, current, cfg)

    with trace_event(events, "CALC", "Generate trade-off summary"):
        summary = generate_summary(metrics, previous_name, current_name, cfg, log=ctx.log)

    with trace_event(events, "WRITE", "Save summary"):
        ctx.save_summary(summary)
    return metrics, summary


def run_batch(args, cfg: ComparisonConfig, ctx: RunContext, events: EventLog) -> pd.DataFrame:
    with trace_event(events, "LOAD", "Load scenario table", details=args.batch):
        scenarios = pd.read_csv(args.batch)
    ctx.log.info(f"Loaded {len(scenarios)} scenarios",
                 extra={"phase": "load", "count": len(scenarios)})

    with trace_event(events, "CALC", "Compare scenarios",
                     details=f"rows={len(scenarios)}"):
        results = compare_frame(scenarios, cfg, log=ctx.log)

    with trace_event(events, "WRITE", "Save comparisons"):
        ctx.save_frame("comparisons", results)
    return results


def main(argv=None) -> int:
    t0 = time.time()
    args = parse_args(argv)

    try:
        raw_cfg, cfg = load_config(args.config)
    except (OSError, yaml.YAMLError, ValidationError) as e:
        print(f"Invalid config {args.config}: {e}", file=sys.stderr)
        return EXIT_INVALID

    ctx = RunContext(runs_dir=cfg.output.runs_dir)
    events = EventLog()
    try:
        ctx.save_config(raw_cfg)
        try:
            if args.batch:
                results = run_batch(args, cfg, ctx, events)
                print(results.to_string(index=False))
                outcome = {"mode": "batch", "scenarios": len(results)}
            else:
                metrics, summary = run_pair(args, cfg, ctx, events)
                if args.json:
                    print(json.dumps(summary.model_dump(by_alias=True), indent=2))
                else:
                    print(format_summary(summary))
                    print()
                    print(format_metric_changes(metrics, cfg.output.currency_symbol))
                outcome = {"mode": "pair", "assessment": summary.assessment}
        except (OSError, ValueError) as e:
            # pydantic.ValidationError is a ValueError
            ctx.log.error(f"Comparison failed: {e}")
            print(f"Comparison failed: {e}", file=sys.stderr)
            return EXIT_INVALID
        finally:
            if cfg.output.save_trace:
                events.flush_all(ctx.run_dir)

        ctx.save_metadata({
            "config_hash": ctx.config_hash(raw_cfg),
            "elapsed_total": round(time.time() - t0, 3),
            **outcome,
        })
        return EXIT_OK
    finally:
        ctx.close()


if __name__ == "__main__":
    sys.exit(main())
