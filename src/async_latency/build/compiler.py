"""Single-file pipeline: byte-compile an instrumented file, run it, find the marker."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from async_latency.build.results import (
    CompilationFailure,
    CompilationResult,
    CompilationSuccess,
    LegacyOutput,
)
from async_latency.build.stages import StageTracker
from async_latency.core.exceptions import CompilationError
from async_latency.metrics.parser import extract_metrics_path

if TYPE_CHECKING:
    from async_latency.config import Config

logger = logging.getLogger(__name__)

COMPILE_SNIPPET = (
    "import py_compile, sys; py_compile.compile(sys.argv[1], cfile=sys.argv[2], doraise=True)"
)
STAGES = ["compile", "run", "extract", "cleanup"]


def filter_diagnostics(output: str, markers: tuple[str, ...]) -> str:
    """Drop known-noisy lines from toolchain output."""
    return "\n".join(line for line in output.splitlines() if not any(m in line for m in markers))


class Compiler:
    """Compile and execute one instrumented file in a child interpreter."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self.stages = StageTracker(STAGES)

    async def compile_and_run(self, source_path: str | Path) -> CompilationResult:
        """Compile source_path to a temporary .pyc, run it, classify the output.

        The temporary binary is removed on every path.
        """
        source_path = Path(source_path)
        self.stages = StageTracker(STAGES)
        binary = Path(self.config.work_root) / f"{uuid.uuid4().hex}_instrumented_binary.pyc"

        try:
            with self.stages.stage("compile"):
                await self.compile(source_path, binary)
            with self.stages.stage("run"):
                output = await self.run(binary, source_dir=source_path.parent)
            with self.stages.stage("extract"):
                metrics_path = extract_metrics_path(output)
        except CompilationError as exc:
            return CompilationFailure(str(exc))
        except OSError as exc:
            message = f"Failed to compile/run instrumented code: {exc}"
            logger.warning(message)
            return CompilationFailure(message)
        finally:
            with self.stages.stage("cleanup"), contextlib.suppress(OSError):
                binary.unlink(missing_ok=True)

        if metrics_path is None:
            logger.info("No metrics file detected for %s, using console output", source_path)
            return LegacyOutput(output)
        return CompilationSuccess(metrics_path=metrics_path, console_output=output)

    async def compile(self, source_path: Path, binary_path: Path) -> None:
        """Byte-compile. Raises CompilationError with filtered diagnostics."""
        returncode, output = await self._exec(
            [self.config.python, "-c", COMPILE_SNIPPET, str(source_path), str(binary_path)]
        )
        if returncode != 0:
            raise CompilationError(f"Compilation failed:\n{self.filter_diagnostics(output)}")

    async def run(self, binary_path: Path, *, source_dir: Path | None = None) -> str:
        """Run a compiled file, returning merged stdout/stderr."""
        env = dict(os.environ)
        env["PYTHONUNBUFFERED"] = "1"
        if source_dir is not None:
            existing = env.get("PYTHONPATH")
            env["PYTHONPATH"] = os.pathsep.join(p for p in (str(source_dir), existing) if p)

        returncode, output = await self._exec([self.config.python, str(binary_path)], env=env)
        if returncode != 0:
            output += f"\nProcess exited with code: {returncode}"
        return output

    def filter_diagnostics(self, output: str) -> str:
        return filter_diagnostics(output, self.config.noisy_diagnostic_markers)

    async def _exec(self, argv: list[str], env: dict[str, str] | None = None) -> tuple[int, str]:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        data, _ = await proc.communicate()
        return proc.returncode or 0, data.decode("utf-8", errors="replace")
