"""Aggregate statistics over an accumulated metrics sequence."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from async_latency.metrics.models import FunctionMetric

TOP_N = 10


@dataclass
class MetricsStatistics:
    """Totals plus the slowest and most-called functions."""

    total_functions: int = 0
    unique_functions: int = 0
    total_execution_time: float = 0.0
    average_execution_time: float = 0.0
    slowest_functions: list[FunctionMetric] = field(default_factory=list)
    most_called_functions: list[tuple[str, int]] = field(default_factory=list)


def generate_statistics(metrics: list[FunctionMetric], *, top_n: int = TOP_N) -> MetricsStatistics:
    """Summarise metrics.

    Both rankings are stable: ties keep sequence order for "slowest" and
    first-seen order of the name for "most called".
    """
    total_time = sum(m.total_time for m in metrics)
    average = total_time / len(metrics) if metrics else 0.0

    slowest = sorted(metrics, key=lambda m: m.total_time, reverse=True)[:top_n]

    call_counts: dict[str, int] = {}
    for metric in metrics:
        call_counts[metric.name] = call_counts.get(metric.name, 0) + 1
    most_called = sorted(call_counts.items(), key=lambda item: item[1], reverse=True)[:top_n]

    return MetricsStatistics(
        total_functions=len(metrics),
        unique_functions=len(call_counts),
        total_execution_time=total_time,
        average_execution_time=average,
        slowest_functions=slowest,
        most_called_functions=most_called,
    )
