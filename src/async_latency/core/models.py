"""Result models handed from the pipeline to reporting and export.

InstrumentationResults is a public contract: its camelCase JSON shape is
what exporters and downstream tools consume.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pydantic import Field

from async_latency.locator.types import AsyncFunctionInfo
from async_latency.metrics.models import CamelModel, FunctionMetric


@dataclass(frozen=True, slots=True)
class InstrumentationResult:
    """Outcome of instrumenting one source file."""

    original_path: str
    instrumented_path: str
    async_functions: list[AsyncFunctionInfo] = field(default_factory=list)
    has_entry_point: bool = False


class FileDetails(CamelModel):
    path: str
    async_function_count: int
    functions: list[str]


class ProjectSummary(CamelModel):
    total_files: int = 0
    files_with_async: int = 0
    total_async_functions: int = 0
    file_details: list[FileDetails] = Field(default_factory=list)


class InstrumentationResults(CamelModel):
    """Complete results from one profiling run."""

    summary: ProjectSummary
    execution_metrics: list[FunctionMetric] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


def summarize(
    results: list[InstrumentationResult],
    display_path: Callable[[str], str] = str,
) -> ProjectSummary:
    """Aggregate per-file results. display_path maps a path to its shown form."""
    with_async = [r for r in results if r.async_functions]
    return ProjectSummary(
        total_files=len(results),
        files_with_async=len(with_async),
        total_async_functions=sum(len(r.async_functions) for r in results),
        file_details=[
            FileDetails(
                path=display_path(r.original_path),
                async_function_count=len(r.async_functions),
                functions=[f.qualified_name for f in r.async_functions],
            )
            for r in with_async
        ],
    )
