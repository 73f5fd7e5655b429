"""Tagged results returned by build stages.

Stages hand these back to the controller instead of raising, so that the
controller alone decides whether a failure ends the batch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

    from async_latency.core.models import InstrumentationResult


@dataclass(frozen=True, slots=True)
class CompilationSuccess:
    """Program ran and announced a metrics sidecar file."""

    metrics_path: str
    console_output: str


@dataclass(frozen=True, slots=True)
class LegacyOutput:
    """Program ran but printed no marker; parse its text instead."""

    console_output: str


@dataclass(frozen=True, slots=True)
class CompilationFailure:
    """Compilation or launch failed. Terminal for the file."""

    message: str

    @property
    def console_output(self) -> str:
        return self.message


CompilationResult = CompilationSuccess | LegacyOutput | CompilationFailure


@dataclass(frozen=True, slots=True)
class ProcessOutcome:
    """Exit status and captured streams of a supervised subprocess."""

    returncode: int
    stdout: str
    stderr: str
    elapsed: float


@dataclass(frozen=True, slots=True)
class PackageBuildResult:
    """Artifact of a successful package build."""

    executable_path: Path
    working_directory: Path
    build_output: str
    instrumented: list[InstrumentationResult] = field(default_factory=list)
