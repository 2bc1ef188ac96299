#!/usr/bin/env python3
"""
Run Context: reproducibility infrastructure for the Strategy Comparison Engine.

Provides:
  - run_id generation (UUID4)
  - Config snapshot saving
  - Run metadata recording (timestamps, versions, parameters)
  - Summary and batch-result artifact saving
  - Structured JSON logging

Usage:
    ctx = RunContext()                  # generates run_id, creates runs/{run_id}/
    ctx.save_config(cfg)                # snapshot config.yaml
    ctx.save_summary(summary)           # trade-off summary as JSON
    ctx.save_frame("comparisons", df)   # batch results as CSV
    ctx.log.info("message", extra={"assessment": "similar"})
    ctx.save_metadata({...})            # save final run metadata
"""

import hashlib
import json
import logging
import platform
import subprocess
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import pandas as pd
import yaml

from schemas import TradeOffSummaryData

ROOT = Path(__file__).resolve().parent
RUNS_DIR = ROOT / "runs"


class _JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "module": record.module,
            "func": record.funcName,
            "msg": record.getMessage(),
        }
        # Merge any extra fields (scenario, assessment, scores, etc.)
        for key in ("scenario", "metric", "assessment", "previous_score",
                    "current_score", "phase", "step", "count", "run_id"):
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        return json.dumps(entry, default=str)


class RunContext:
    """Manages a single comparison run's metadata, artifacts, and logging."""

    def __init__(self, run_id: str | None = None, runs_dir: str | Path | None = None):
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.start_time = datetime.now()
        base = Path(runs_dir) if runs_dir is not None else RUNS_DIR
        if not base.is_absolute():
            base = ROOT / base
        self.run_dir = base / self.run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)

        # Set up structured file logger
        self.log = logging.getLogger(f"comparison.{self.run_id}")
        self.log.setLevel(logging.DEBUG)
        self.log.propagate = False

        # Remove existing handlers to avoid duplicates on re-init
        self.close()

        # JSON file handler
        log_path = self.run_dir / "run.log"
        fh = logging.FileHandler(str(log_path), encoding="utf-8")
        fh.setFormatter(_JSONFormatter())
        self.log.addHandler(fh)

        # Console handler (human-readable)
        ch = logging.StreamHandler(sys.stderr)
        ch.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"))
        ch.setLevel(logging.INFO)
        self.log.addHandler(ch)

        self.log.info("Run started", extra={"run_id": self.run_id})

    def close(self):
        """Detach and close this run's handlers (releases run.log)."""
        for handler in list(self.log.handlers):
            self.log.removeHandler(handler)
            handler.close()

    def save_config(self, cfg: dict) -> Path:
        """Save a snapshot of the config used for this run."""
        path = self.run_dir / "config.yaml"
        with open(path, "w") as f:
            yaml.dump(cfg, f, default_flow_style=False, sort_keys=False)
        self.log.info("Config snapshot saved", extra={"phase": "init"})
        return path

    def config_hash(self, cfg: dict) -> str:
        """Deterministic hash of the config keys that change a verdict.

        Display settings (names, output paths) are left out so two runs that
        would score identically share a hash.
        """
        relevant = {
            "scoring": cfg.get("scoring", {}),
            "ranking": cfg.get("ranking", {}),
            "deltas": cfg.get("deltas", {}),
        }
        raw = json.dumps(relevant, sort_keys=True)
        return hashlib.sha256(raw.encode()).hexdigest()[:12]

    def save_summary(self, summary: TradeOffSummaryData, name: str = "summary") -> Path:
        """Save a trade-off summary in the camelCase wire format."""
        path = self.run_dir / f"{name}.json"
        with open(path, "w", encoding="utf-8") as f:
            json.dump(summary.model_dump(by_alias=True), f, indent=2)
        self.log.info(f"Summary saved: {summary.headline}",
                      extra={"phase": "artifact", "step": name,
                             "assessment": summary.assessment})
        return path

    def save_frame(self, name: str, df: pd.DataFrame) -> Path:
        """Save a batch result DataFrame as CSV."""
        path = self.run_dir / f"{name}.csv"
        df.to_csv(str(path), index=False)
        self.log.info(f"Artifact saved: {name} ({len(df)} rows)",
                      extra={"phase": "artifact", "step": name, "count": len(df)})
        return path

    def save_metadata(self, extra: dict | None = None) -> Path:
        """Save run metadata (call at end of the run)."""
        end_time = datetime.now()
        meta = {
            "run_id": self.run_id,
            "start_time": self.start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "elapsed_seconds": round((end_time - self.start_time).total_seconds(), 1),
            "git_sha": _get_git_sha(),
            "python_version": sys.version,
            "platform": platform.platform(),
            "packages": _get_package_versions(),
        }
        if extra:
            meta.update(extra)
        path = self.run_dir / "meta.json"
        with open(path, "w") as f:
            json.dump(meta, f, indent=2, default=str)
        self.log.info("Run metadata saved", extra={"run_id": self.run_id})
        return path


def _get_git_sha() -> str:
    """Get the current git commit SHA, or 'unknown' if not in a git repo."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True, text=True, timeout=5,
            cwd=str(ROOT),
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass
    return "unknown"


def _get_package_versions() -> dict:
    """Get versions of key dependencies."""
    import importlib.metadata

    versions = {}
    for pkg in ["numpy", "pandas", "pyyaml", "pydantic"]:
        try:
            versions[pkg] = importlib.metadata.version(pkg)
        except importlib.metadata.PackageNotFoundError:
            versions[pkg] = "unknown"
    return versions
