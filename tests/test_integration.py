"""Integration tests for infrastructure: the command-line runner,
RunContext artifacts, and the instrumentation trace.
"""

import json
import sys
from pathlib import Path

import pandas as pd
import pytest
import yaml

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from instrumentation import EventLog, trace_event
from delta_calculations import compute_delta
from run_comparison import (
    EXIT_INVALID,
    EXIT_OK,
    format_metric_changes,
    load_config,
    main,
    parse_args,
)
from run_context import RunContext
from schemas import ComparisonMetrics, TradeOffSummaryData

FIXTURES = Path(__file__).resolve().parent / "fixtures"


def _only_run_dir(tmp_path):
    runs = list((tmp_path / "runs").iterdir())
    assert len(runs) == 1
    return runs[0]


# =====================================================================
# CLI
# =====================================================================

class TestCommandLine:
    def _pair_args(self, tmp_config, *extra):
        return ["--config", str(tmp_config),
                "--previous", str(FIXTURES / "baseline_sim.json"),
                "--current", str(FIXTURES / "leveraged_sim.json"),
                "--previous-name", "Baseline", "--current-name", "Leveraged",
                *extra]

    def test_pair_text_output(self, tmp_path, tmp_config, capsys):
        assert main(self._pair_args(tmp_config)) == EXIT_OK
        out = capsys.readouterr().out
        assert out.startswith("Leveraged strategy outperforms")
        assert "Leveraged produces $200K higher median terminal value" in out
        assert "Consider adopting these parameters." in out

    def test_pair_text_lists_metric_changes(self, tmp_path, tmp_config, capsys):
        assert main(self._pair_args(tmp_config)) == EXIT_OK
        out = capsys.readouterr().out
        assert "Key Metric Changes" in out
        assert "Final Value       +$200K (+20.0%) ↑" in out
        assert "Success Rate      +4.5% (+5.0%) ↑" in out
        assert "CAGR              +0.6% (+8.0%) ↑" in out
        assert "Margin Call Risk  -3.0% (-37.5%) ↓" in out

    def test_metric_changes_skip_absent_metrics(self):
        metrics = ComparisonMetrics(
            final_value=compute_delta(1_000_000, 900_000),
            success_rate=compute_delta(90, 90))
        assert format_metric_changes(metrics, "€").splitlines() == [
            "Key Metric Changes",
            "  Final Value       -€100K (-10.0%) ↓",
            "  Success Rate      0.0% (0.0%) →",
        ]

    def test_pair_json_output(self, tmp_path, tmp_config, capsys):
        assert main(self._pair_args(tmp_config, "--json")) == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        assert data["assessment"] == "current-better"
        assert len(data["keyDifferences"]) == 4

    def test_pair_artifacts(self, tmp_path, tmp_config):
        main(self._pair_args(tmp_config))
        run_dir = _only_run_dir(tmp_path)
        for name in ["config.yaml", "run.log", "summary.json", "meta.json",
                     "run_log_full.csv", "run_log_full.md"]:
            assert (run_dir / name).exists(), name

        with open(run_dir / "summary.json") as f:
            summary = TradeOffSummaryData.model_validate(json.load(f))
        assert summary.headline == "Leveraged strategy outperforms"

        with open(run_dir / "meta.json") as f:
            meta = json.load(f)
        assert meta["mode"] == "pair"
        assert meta["assessment"] == "current-better"
        assert len(meta["config_hash"]) == 12

        trace = pd.read_csv(run_dir / "run_log_full.csv")
        assert trace["Phase"].tolist() == ["LOAD", "CALC", "CALC", "WRITE"]
        assert (trace["Status"] == "OK").all()

    def test_default_names_from_config(self, tmp_path, tmp_config, capsys):
        args = ["--config", str(tmp_config),
                "--previous", str(FIXTURES / "baseline_sim.json"),
                "--current", str(FIXTURES / "leveraged_sim.json")]
        assert main(args) == EXIT_OK
        assert capsys.readouterr().out.startswith("Current strategy outperforms")

    def test_placeholder_when_identical(self, tmp_path, tmp_config, capsys):
        same = str(FIXTURES / "baseline_sim.json")
        assert main(["--config", str(tmp_config),
                     "--previous", same, "--current", same]) == EXIT_OK
        out = capsys.readouterr().out
        assert out.startswith("Strategies produce similar outcomes")
        assert "Strategies are nearly identical" in out

    def test_batch(self, tmp_path, tmp_config, capsys):
        args = ["--config", str(tmp_config),
                "--batch", str(FIXTURES / "scenarios.csv")]
        assert main(args) == EXIT_OK
        run_dir = _only_run_dir(tmp_path)
        out = pd.read_csv(run_dir / "comparisons.csv")
        assert len(out) == 4
        assert out["assessment"].tolist() == [
            "current-better", "previous-better", "similar", "similar"]

    def test_missing_file_exits_invalid(self, tmp_path, tmp_config, capsys):
        args = ["--config", str(tmp_config),
                "--previous", str(tmp_path / "nope.json"),
                "--current", str(FIXTURES / "leveraged_sim.json")]
        assert main(args) == EXIT_INVALID
        assert "Comparison failed" in capsys.readouterr().err
        trace = pd.read_csv(_only_run_dir(tmp_path) / "run_log_full.csv")
        assert trace["Status"].tolist() == ["FAIL"]

    def test_malformed_simulation_exits_invalid(self, tmp_path, tmp_config):
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"statistics": {"median": 1.0, "successRate": 140}}))
        args = ["--config", str(tmp_config),
                "--previous", str(bad),
                "--current", str(FIXTURES / "leveraged_sim.json")]
        assert main(args) == EXIT_INVALID

    def test_invalid_config_exits_invalid(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"scoring": {"cagr": -1}}))
        args = ["--config", str(path), "--batch", str(FIXTURES / "scenarios.csv")]
        assert main(args) == EXIT_INVALID
        assert "Weight must be >= 0" in capsys.readouterr().err

    def test_non_mapping_config_exits_invalid(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump([{"scoring": {"cagr": 1}}]))
        args = ["--config", str(path), "--batch", str(FIXTURES / "scenarios.csv")]
        assert main(args) == EXIT_INVALID
        assert "Invalid config" in capsys.readouterr().err

    def test_requires_inputs(self):
        with pytest.raises(SystemExit):
            parse_args(["--previous", "a.json"])

    def test_load_config(self):
        raw, cfg = load_config()
        assert raw["scoring"]["final_value"] == cfg.scoring.final_value


# =====================================================================
# RUN CONTEXT
# =====================================================================

class TestRunContext:
    def test_creates_run_dir_and_log(self, tmp_path):
        ctx = RunContext(run_id="abc123", runs_dir=tmp_path)
        try:
            ctx.log.info("hello", extra={"assessment": "similar"})
            assert ctx.run_dir == tmp_path / "abc123"
        finally:
            ctx.close()
        lines = (tmp_path / "abc123" / "run.log").read_text().splitlines()
        entries = [json.loads(line) for line in lines]
        assert entries[0]["msg"] == "Run started"
        assert entries[0]["run_id"] == "abc123"
        assert entries[1]["assessment"] == "similar"

    def test_config_hash_ignores_display_settings(self, tmp_path, raw_cfg):
        ctx = RunContext(runs_dir=tmp_path)
        try:
            renamed = dict(raw_cfg, names={"previous": "X", "current": "Y"})
            assert ctx.config_hash(raw_cfg) == ctx.config_hash(renamed)
            reweighted = dict(raw_cfg, scoring={"final_value": 3})
            assert ctx.config_hash(raw_cfg) != ctx.config_hash(reweighted)
        finally:
            ctx.close()

    def test_reinit_does_not_duplicate_handlers(self, tmp_path):
        a = RunContext(run_id="same", runs_dir=tmp_path)
        b = RunContext(run_id="same", runs_dir=tmp_path)
        try:
            assert len(b.log.handlers) == 2
        finally:
            a.close()
            b.close()


# =====================================================================
# INSTRUMENTATION
# =====================================================================

class TestInstrumentation:
    def test_records_ok_event(self):
        events = EventLog()
        with trace_event(events, "CALC", "step"):
            pass
        evt = events.events[0]
        assert (evt.step, evt.phase, evt.status) == (1, "CALC", "OK")
        assert evt.caller.startswith("test_integration.py:test_records_ok_event")

    def test_failure_recorded_and_reraised(self):
        events = EventLog()
        with pytest.raises(ZeroDivisionError):
            with trace_event(events, "CALC", "divide", details="x=1"):
                1 / 0
        evt = events.events[0]
        assert evt.status == "FAIL"
        assert evt.details.startswith("x=1; ERROR: ZeroDivisionError")
        assert events.failures == [evt]

    def test_flush_markdown(self, tmp_path):
        events = EventLog()
        events.record("LOAD", "read | file", 12.5)
        path = events.flush_md(tmp_path / "trace.md")
        text = Path(path).read_text(encoding="utf-8")
        assert "- Total events: 1" in text
        assert "read \\| file" in text

    def test_flush_markdown_phases_and_failures(self, tmp_path):
        events = EventLog()
        events.record("LOAD", "load", 10.0)
        events.record("CALC", "metrics", 2.0)
        events.record("CALC", "summary", 3.0, status="FAIL", details="ERROR: ValueError: bad")
        text = events.flush_md(tmp_path / "trace.md").read_text(encoding="utf-8")
        assert "| CALC | 2 | 5.0 |" in text
        assert "**Step 3 failed** (summary): ERROR: ValueError: bad" in text
        assert "- Failures: 1" in text

    def test_flush_csv_columns(self, tmp_path):
        events = EventLog()
        with trace_event(events, "WRITE", "save"):
            pass
        df = pd.read_csv(events.flush_csv(tmp_path / "trace.csv"))
        assert list(df.columns) == ["Step", "Phase", "Operation", "Duration (ms)",
                                    "Status", "Details", "Caller"]
        assert df.loc[0, "Phase"] == "WRITE"
