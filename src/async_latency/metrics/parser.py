"""MetricsParser — recover FunctionMetric values from an instrumented run.

Two paths, tried in order:
    1. Structured: a marker line names a JSON sidecar file written by the
       runtime collector.
    2. Legacy: `[Latency] <name>: <seconds>s` lines in the console output.

Recovery never raises. A broken sidecar falls back to the text path and
unparsable text yields no metrics.
"""

from __future__ import annotations

import contextlib
import json
import logging
import math
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from async_latency.build.results import (
    CompilationFailure,
    CompilationResult,
    CompilationSuccess,
)
from async_latency.metrics.models import FunctionMetric, RawMetricRecord

logger = logging.getLogger(__name__)

METRICS_MARKER = "__ASYNC_PROFILER_METRICS__"
LEGACY_TAG = "[Latency]"
LEGACY_SEPARATOR = ": "

_RECORDS = TypeAdapter(list[RawMetricRecord])


def estimate_depth(name: str) -> int:
    """Placeholder depth: 0 for anything named like an entry point, else 1."""
    return 0 if "main" in name else 1


def extract_metrics_path(output: str) -> str | None:
    """Path announced by the first marker line, or None."""
    prefix = f"{METRICS_MARKER}:"
    for line in output.splitlines():
        index = line.find(prefix)
        if index != -1:
            path = line[index + len(prefix) :].strip()
            if path:
                return path
    return None


def write_metrics_file(records: list[RawMetricRecord], path: str | Path) -> Path:
    """Write records in the collector's sidecar format."""
    target = Path(path)
    payload = [r.model_dump(by_alias=True) for r in records]
    target.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    return target


class MetricsParser:
    """Parse sidecar files and console output into FunctionMetric lists."""

    def parse_metrics_file(self, path: str | Path) -> list[FunctionMetric]:
        """Load a sidecar file. Raises OSError / ValidationError on bad input."""
        raw = _RECORDS.validate_json(Path(path).read_bytes())
        return [
            FunctionMetric(
                name=record.function,
                total_time=max(record.duration, 0.0),
                depth=estimate_depth(record.function),
            )
            for record in raw
        ]

    def parse_console_output(self, output: str) -> list[FunctionMetric]:
        """Legacy fallback: one `[Latency] name: 0.123s` line per call."""
        metrics: list[FunctionMetric] = []
        for line in output.splitlines():
            metric = self._parse_legacy_line(line)
            if metric is not None:
                metrics.append(metric)
        return metrics

    def _parse_legacy_line(self, line: str) -> FunctionMetric | None:
        index = line.find(LEGACY_TAG)
        if index == -1:
            return None
        parts = line[index + len(LEGACY_TAG) :].split(LEGACY_SEPARATOR, 1)
        if len(parts) != 2:
            return None

        name = parts[0].strip()
        time_text = parts[1].strip()
        if not name or not time_text.endswith("s"):
            return None
        try:
            seconds = float(time_text[:-1])
        except ValueError:
            return None
        if not math.isfinite(seconds) or seconds < 0:
            return None
        return FunctionMetric(name=name, total_time=seconds, depth=estimate_depth(name))

    def parse_output(self, output: str) -> tuple[list[FunctionMetric], bool]:
        """Parse captured output. Returns (metrics, structured).

        The sidecar file is deleted once it has been parsed.
        """
        metrics_path = extract_metrics_path(output)
        if metrics_path is not None:
            metrics = self._parse_sidecar(metrics_path)
            if metrics is not None:
                return metrics, True
        return self.parse_console_output(output), False

    def parse_compilation_result(self, result: CompilationResult) -> tuple[list[FunctionMetric], bool]:
        """Metrics for one single-file run. Failures yield nothing."""
        if isinstance(result, CompilationFailure):
            return [], False
        if isinstance(result, CompilationSuccess):
            metrics = self._parse_sidecar(result.metrics_path)
            if metrics is not None:
                return metrics, True
        return self.parse_console_output(result.console_output), False

    def _parse_sidecar(self, path: str) -> list[FunctionMetric] | None:
        try:
            metrics = self.parse_metrics_file(path)
        except (OSError, ValidationError, ValueError):
            logger.warning("Failed to parse metrics file %s", path, exc_info=True)
            return None
        with contextlib.suppress(OSError):
            Path(path).unlink(missing_ok=True)
        return metrics
