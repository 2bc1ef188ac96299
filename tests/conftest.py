"""Shared fixtures for Strategy Comparison Engine tests."""

import json
import sys
from pathlib import Path

import pytest
import yaml


def pytest_addoption(parser):
    parser.addoption("--regen", action="store_true", default=False,
                     help="Regenerate golden file")

# Ensure project root is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

FIXTURES = Path(__file__).resolve().parent / "fixtures"

from schemas import ComparisonConfig, ComparisonMetrics, DeltaRecord, SimulationOutput


@pytest.fixture
def raw_cfg():
    """Load the production config.yaml as a dict."""
    with open(ROOT / "config.yaml") as f:
        return yaml.safe_load(f)


@pytest.fixture
def cfg(raw_cfg):
    """Validated production config."""
    return ComparisonConfig.model_validate(raw_cfg)


def delta(absolute, direction, percent_change=0.0):
    """Shorthand DeltaRecord builder for hand-made metric bundles."""
    return DeltaRecord(absolute=absolute, percent_change=percent_change,
                       direction=direction)


@pytest.fixture
def example_metrics():
    """Baseline vs Leveraged bundle: every metric favours the current run."""
    return ComparisonMetrics(
        final_value=delta(200000, "up", 20),
        success_rate=delta(5, "up", 5.2),
        margin_call_probability=delta(-3, "down", -10),
        cagr=delta(0.01, "up", 8),
    )


@pytest.fixture
def baseline_sim():
    with open(FIXTURES / "baseline_sim.json") as f:
        return SimulationOutput.model_validate(json.load(f))


@pytest.fixture
def leveraged_sim():
    with open(FIXTURES / "leveraged_sim.json") as f:
        return SimulationOutput.model_validate(json.load(f))


@pytest.fixture
def tmp_config(tmp_path, raw_cfg):
    """Production config with runs written under tmp_path."""
    cfg = dict(raw_cfg)
    cfg["output"] = dict(raw_cfg.get("output", {}), runs_dir=str(tmp_path / "runs"))
    path = tmp_path / "config.yaml"
    with open(path, "w") as f:
        yaml.dump(cfg, f, sort_keys=False)
    return path
