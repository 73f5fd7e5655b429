"""Function locator — deterministic discovery of async functions.

Public API:
    analyze_module(module) -> AnalysisResult
    analyze_source(source) -> AnalysisResult
    analyze_file(file_path) -> AnalysisResult
"""

from __future__ import annotations

from pathlib import Path

import libcst as cst

from async_latency.locator.analyzer import AsyncFunctionLocator
from async_latency.locator.types import (
    AnalysisResult,
    AsyncFunctionInfo,
    DeclarationKind,
    SourceLocation,
)


def analyze_module(module: cst.Module) -> AnalysisResult:
    """Analyze an already-parsed module."""
    return AsyncFunctionLocator(module).analyze()


def analyze_source(source: str) -> AnalysisResult:
    """Parse and analyze source text. Parse failures are reported, not raised."""
    try:
        module = cst.parse_module(source)
    except cst.ParserSyntaxError as exc:
        return AnalysisResult(parse_error=str(exc))
    return analyze_module(module)


def analyze_file(file_path: str | Path) -> AnalysisResult:
    """Analyze a file on disk."""
    source = Path(file_path).read_text(encoding="utf-8", errors="replace")
    return analyze_source(source)


__all__ = [
    "AnalysisResult",
    "AsyncFunctionInfo",
    "DeclarationKind",
    "SourceLocation",
    "analyze_file",
    "analyze_module",
    "analyze_source",
]
