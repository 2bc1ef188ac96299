#!/usr/bin/env python3
"""
Instrumentation Layer for the Strategy Comparison Engine
=========================================================
Times each step of a comparison run (LOAD, CALC, WRITE) into an in-memory
trace. When the run ends the trace is written next to the other run
artifacts as run_log_full.csv and run_log_full.md.

Usage:
    from instrumentation import EventLog, trace_event

    events = EventLog()
    with trace_event(events, "CALC", "Generate trade-off summary"):
        summary = generate_summary(metrics, "Baseline", "Leveraged")

    events.flush_all(ctx.run_dir)
"""

import inspect
import time
from contextlib import contextmanager
from pathlib import Path
from typing import NamedTuple, Optional

import pandas as pd

COLUMNS = ["Step", "Phase", "Operation", "Duration (ms)", "Status", "Details", "Caller"]


class Event(NamedTuple):
    step: int
    phase: str
    operation: str
    duration_ms: float
    status: str
    details: str
    caller: str

    def row(self) -> list:
        return [self.step, self.phase, self.operation, self.duration_ms,
                self.status, self.details, self.caller]


class EventLog:
    """Ordered trace of the steps of one run."""

    def __init__(self):
        self.events: list[Event] = []

    def record(self, phase: str, operation: str, duration_ms: float,
               status: str = "OK", details: str = "", caller: str = "") -> Event:
        evt = Event(len(self.events) + 1, phase, operation,
                    round(duration_ms, 1), status, details, caller)
        self.events.append(evt)
        return evt

    @property
    def failures(self) -> list[Event]:
        return [e for e in self.events if e.status != "OK"]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([e.row() for e in self.events], columns=COLUMNS)

    def flush_csv(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.to_frame().to_csv(path, index=False)
        return path

    def flush_md(self, path: str | Path) -> Path:
        """Markdown trace: per-phase timings, failed steps, then every step."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        df = self.to_frame()

        lines = ["# Comparison Run Trace", "",
                 f"- Total events: {len(df)}",
                 f"- Total traced time: {df['Duration (ms)'].sum():.1f} ms",
                 f"- Failures: {len(self.failures)}", ""]

        if not df.empty:
            by_phase = df.groupby("Phase", sort=False)["Duration (ms)"].agg(["count", "sum"])
            lines += ["## Phases", "", "| Phase | Steps | Time (ms) |", "| --- | --- | --- |"]
            for phase, r in by_phase.iterrows():
                lines.append(f"| {phase} | {int(r['count'])} | {r['sum']:.1f} |")
            lines.append("")

        for evt in self.failures:
            lines.append(f"**Step {evt.step} failed** ({evt.operation}): {evt.details}")
        if self.failures:
            lines.append("")

        lines += ["## Steps", "",
                  "| " + " | ".join(COLUMNS) + " |",
                  "| " + " | ".join("---" for _ in COLUMNS) + " |"]
        for evt in self.events:
            cells = (str(v).replace("|", "\\|") for v in evt.row())
            lines.append("| " + " | ".join(cells) + " |")

        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    def flush_all(self, run_dir: str | Path):
        d = Path(run_dir)
        self.flush_csv(d / "run_log_full.csv")
        self.flush_md(d / "run_log_full.md")


def _get_caller(skip: int) -> str:
    """Caller as file:function:line."""
    try:
        frame = inspect.stack()[skip]
    except IndexError:
        return "unknown"
    return f"{Path(frame.filename).name}:{frame.function}:{frame.lineno}"


@contextmanager
def trace_event(log: EventLog, phase: str, operation: str,
                details: str = "", caller: Optional[str] = None):
    """Time the enclosed block as one step of ``log``.

    A step that raises is recorded with status FAIL and the error appended
    to its details; the exception propagates.
    """
    if caller is None:
        # _get_caller -> trace_event -> contextmanager __enter__ -> caller
        caller = _get_caller(skip=3)
    t0 = time.monotonic()
    status = "OK"
    try:
        yield
    except Exception as exc:
        status = "FAIL"
        err = f"ERROR: {type(exc).__name__}: {exc}"
        details = f"{details}; {err}" if details else err
        raise
    finally:
        log.record(phase, operation, (time.monotonic() - t0) * 1000,
                   status=status, details=details, caller=caller)
