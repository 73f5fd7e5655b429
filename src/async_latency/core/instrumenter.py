"""Instrumenter -- top-level controller for one profiling run.

validate path -> detect mode {package, file-or-directory} -> run the mode
pipeline -> aggregate metrics -> hand off to the reporter.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import TYPE_CHECKING

from async_latency.build.compiler import Compiler
from async_latency.build.files import discover_python_files, relative_display_path
from async_latency.build.package import PackageInstrumenter
from async_latency.build.results import CompilationFailure
from async_latency.config import Config
from async_latency.core.exceptions import AlreadyInstrumentedError, InputError, PackageError
from async_latency.core.models import InstrumentationResult, InstrumentationResults, summarize
from async_latency.locator import analyze_source
from async_latency.logging.logger import RunLogger
from async_latency.metrics.parser import MetricsParser
from async_latency.metrics.statistics import generate_statistics
from async_latency.rewriting.rewriter import RewriteSession, contains_marker, instrument_source

if TYPE_CHECKING:
    from async_latency.metrics.models import FunctionMetric
    from async_latency.reporting.console import Reporter

logger = logging.getLogger(__name__)


class _SilentReporter:
    """Reporter used when the caller supplies none."""

    def info(self, message: str) -> None:
        logger.info(message)

    def warn(self, message: str) -> None:
        logger.warning(message)

    def error(self, message: str) -> None:
        logger.error(message)

    def report_summary(self, summary) -> None:
        pass

    def report_execution(self, message: str) -> None:
        logger.info(message)

    def report_program_output(self, output: str) -> None:
        pass

    def report_statistics(self, stats) -> None:
        pass


class Instrumenter:
    """Instrument, run and measure the async functions under input_path."""

    def __init__(
        self,
        input_path: str | Path,
        config: Config | None = None,
        reporter: Reporter | None = None,
        run_logger: RunLogger | None = None,
    ) -> None:
        self.input_path = Path(input_path)
        self.config = config or Config()
        self.reporter = reporter or _SilentReporter()
        self.run_logger = run_logger or RunLogger(self.config.log_dir, run_id=uuid.uuid4().hex)
        self.parser = MetricsParser()
        self.metrics: list[FunctionMetric] = []

    def validate(self) -> None:
        """Raise InputError for a missing or derived input."""
        if not self.input_path.exists():
            msg = f"Path does not exist: {self.input_path}"
            raise InputError(msg)
        if self.config.instrumented_suffix in self.input_path.name:
            msg = f"Refusing to instrument an already-instrumented path: {self.input_path.name}"
            raise InputError(msg)

    async def run(self) -> InstrumentationResults | None:
        """Run the whole pipeline.

        Input errors propagate. Stage failures are reported and yield None.
        """
        self.validate()
        self.metrics = []

        package = PackageInstrumenter(self.input_path, self.config, reporter=self.reporter)
        if self.input_path.is_dir() and package.is_package():
            results = await self._run_package(package)
        else:
            results = await self._run_files()

        if results is not None and results.execution_metrics:
            self.reporter.report_statistics(generate_statistics(results.execution_metrics))
        return results

    # ------------------------------------------------------------------
    # File / directory mode
    # ------------------------------------------------------------------

    async def _run_files(self) -> InstrumentationResults:
        files = discover_python_files(self.input_path, self.config.instrumented_suffix)
        if not files:
            self.reporter.warn(f"No Python files found in {self.input_path}")

        results: list[InstrumentationResult] = []
        for path in files:
            with self.run_logger.timed("instrument.file", path=str(path)) as ctx:
                result = self.instrument_file(path)
                ctx["instrumented"] = result is not None
            if result is not None:
                results.append(result)

        summary = summarize(results, self._display_path)
        self.reporter.report_summary(summary)

        entries = [r for r in results if r.has_entry_point]
        if results and not entries:
            self.reporter.info(
                "No executable files found (no `__main__` guard). "
                "Instrumented files have been created."
            )
        for result in entries:
            await self._compile_and_run(result)

        return InstrumentationResults(summary=summary, execution_metrics=list(self.metrics))

    def instrument_file(self, path: Path) -> InstrumentationResult | None:
        """Write `<stem>_instrumented.py` next to path. Skips with a warning."""
        output_path = path.with_name(f"{path.stem}{self.config.instrumented_suffix}{path.suffix}")
        display = self._display_path(str(path))
        try:
            source = path.read_text(encoding="utf-8")
            if contains_marker(source):
                raise AlreadyInstrumentedError(display)
        except (OSError, UnicodeDecodeError, AlreadyInstrumentedError) as exc:
            logger.warning("Skipping %s: %s", path, exc)
            self.reporter.warn(f"Skipping {display}: {exc}")
            return None

        analysis = analyze_source(source)
        if analysis.parse_error is not None:
            logger.warning("Failed to parse %s: %s", path, analysis.parse_error)
            self.reporter.warn(f"Failed to parse {display}: {analysis.parse_error}")
            return None

        if output_path.exists():
            self.reporter.warn(f"Overwriting existing file: {output_path.name}")

        session = RewriteSession(file_path=str(path))
        output_path.write_text(instrument_source(source, session), encoding="utf-8")
        return InstrumentationResult(
            original_path=str(path),
            instrumented_path=str(output_path),
            async_functions=analysis.async_functions,
            has_entry_point=analysis.has_entry_point,
        )

    async def _compile_and_run(self, result: InstrumentationResult) -> None:
        name = Path(result.instrumented_path).name
        self.reporter.report_execution(f"Running {name}")
        compiler = Compiler(self.config)
        with self.run_logger.timed("compile.run", path=result.instrumented_path) as ctx:
            outcome = await compiler.compile_and_run(result.instrumented_path)
            metrics, structured = self.parser.parse_compilation_result(outcome)
            ctx["metrics"] = len(metrics)
            ctx["structured"] = structured

        if isinstance(outcome, CompilationFailure):
            self.reporter.error(outcome.message)
            return
        if outcome.console_output:
            self.reporter.report_program_output(outcome.console_output)
        self._accept(metrics, structured)

    # ------------------------------------------------------------------
    # Package mode
    # ------------------------------------------------------------------

    async def _run_package(self, package: PackageInstrumenter) -> InstrumentationResults | None:
        with package:
            try:
                with self.run_logger.timed("package.build", path=str(self.input_path)):
                    build = await package.instrument_and_build()

                self.reporter.report_execution(f"Running {build.executable_path.name}")
                with self.run_logger.timed("package.run", path=str(build.executable_path)) as ctx:
                    output = await package.run_executable(build.executable_path)
                    metrics, structured = self.parser.parse_output(output)
                    ctx["metrics"] = len(metrics)
            except (PackageError, OSError) as exc:
                logger.warning("Package mode failed: %s", exc)
                self.reporter.error(str(exc))
                return None

            self.reporter.report_program_output(output)
            self._accept(metrics, structured)

            summary = summarize(
                build.instrumented,
                lambda p: relative_display_path(p, self.input_path),
            )
            self.reporter.report_summary(summary)
            return InstrumentationResults(summary=summary, execution_metrics=list(self.metrics))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _accept(self, metrics: list[FunctionMetric], structured: bool) -> None:
        self.metrics.extend(metrics)
        if structured:
            self.reporter.info(f"Loaded {len(metrics)} metric(s) from structured metrics file")
        elif metrics:
            self.reporter.info(f"Parsed {len(metrics)} metric(s) from console output")
        else:
            self.reporter.info("No metrics captured")

    def _display_path(self, path: str) -> str:
        root = self.input_path if self.input_path.is_dir() else self.input_path.parent
        return relative_display_path(path, root)
