"""PackageInstrumenter — instrument, build and run a whole pyproject package.

The package is copied into a fresh working directory, every source file
is rewritten in place there, and the copy is built into a single
executable zip application under `.build/release/`. The user's tree is
never modified. The working directory is removed on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
import time
import tomllib
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import libcst as cst

from async_latency.build.compiler import filter_diagnostics
from async_latency.build.files import discover_python_files
from async_latency.build.results import PackageBuildResult
from async_latency.build.stages import StageTracker
from async_latency.build.supervisor import ProcessSupervisor
from async_latency.core.exceptions import (
    AlreadyInstrumentedError,
    AmbiguousExecutableError,
    BuildFailedError,
    EntryPointError,
    ExecutableNotFoundError,
    NoSourceFilesError,
    PackageError,
)
from async_latency.core.models import InstrumentationResult
from async_latency.locator import analyze_module
from async_latency.rewriting.rewriter import (
    RUNTIME_MODULE,
    RewriteSession,
    contains_marker,
    instrument_module,
    runtime_module_source,
)

if TYPE_CHECKING:
    from async_latency.config import Config
    from async_latency.reporting.console import Reporter

logger = logging.getLogger(__name__)

STAGES = ["workspace", "copy", "instrument", "entry", "build", "locate", "run", "cleanup"]
RUNTIME_MODULE_FILE = f"{RUNTIME_MODULE}.py"
NON_EXECUTABLE_SUFFIXES: frozenset[str] = frozenset(
    {".py", ".pyc", ".pyo", ".pyd", ".so", ".o", ".a", ".dylib", ".dll", ".json", ".log", ".txt"}
)
LAUNCHER_TEMPLATE = """import runpy

runpy.run_module({module!r}, run_name="__main__", alter_sys=True)
"""


@dataclass(frozen=True, slots=True)
class CopyStep:
    """One entry of the working-copy plan. Optional steps may fail."""

    name: str
    relative: str
    required: bool = False


class PackageInstrumenter:
    """Drive package mode from manifest detection to a runnable artifact.

    Usage:
        with PackageInstrumenter(path, config) as package:
            build = await package.instrument_and_build()
            output = await package.run_executable(build.executable_path)
    """

    def __init__(
        self,
        package_path: str | Path,
        config: Config,
        *,
        reporter: Reporter | None = None,
    ) -> None:
        self.package_path = Path(package_path)
        self.config = config
        self.reporter = reporter
        self.working_directory = Path(config.work_root) / f"async_profiler_{uuid.uuid4().hex}"
        self.stages = StageTracker(STAGES)
        self.copy_warnings: list[str] = []
        self._collector_injected = False

    def __enter__(self) -> PackageInstrumenter:
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def is_package(self) -> bool:
        """A manifest at the input root is the only package signal."""
        return (self.package_path / self.config.manifest_name).is_file()

    @property
    def source_root(self) -> Path:
        return self.working_directory / self.config.source_dir

    @property
    def release_directory(self) -> Path:
        return self.working_directory / self.config.release_dir

    def manifest(self) -> dict:
        """Parsed manifest of the input package. Invalid TOML reads as empty."""
        try:
            return tomllib.loads(
                (self.package_path / self.config.manifest_name).read_text(encoding="utf-8")
            )
        except (OSError, tomllib.TOMLDecodeError):
            logger.warning("Could not read %s", self.config.manifest_name, exc_info=True)
            return {}

    @property
    def project_name(self) -> str:
        name = self.manifest().get("project", {}).get("name") or self.package_path.resolve().name
        return re.sub(r"[^A-Za-z0-9_.-]", "_", str(name)) or "app"

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def instrument_and_build(self) -> PackageBuildResult:
        """Copy, instrument and build. Raises PackageError subclasses."""
        self._notify(f"Detected Python package at: {self.package_path}")

        with self.stages.stage("workspace"):
            self.working_directory.mkdir(parents=True, exist_ok=False)

        with self.stages.stage("copy"):
            self._notify("Copying package to temporary location...")
            self.copy_package()

        with self.stages.stage("instrument"):
            self._notify("Instrumenting Python files...")
            results = self.instrument_source_files()
            self._notify(f"Instrumented {len(results)} file(s)")

        with self.stages.stage("entry"):
            entry = self.resolve_entry_point(results)

        with self.stages.stage("build"):
            self._notify("Building instrumented package...")
            build_output = await self.build_package(entry)

        with self.stages.stage("locate"):
            executable = self.find_executable()

        return PackageBuildResult(
            executable_path=executable,
            working_directory=self.working_directory,
            build_output=build_output,
            instrumented=results,
        )

    def copy_plan(self) -> list[CopyStep]:
        """Ordered copy steps: manifest and sources are mandatory."""
        steps = [
            CopyStep("manifest", self.config.manifest_name, required=True),
            CopyStep("sources", self.config.source_dir, required=True),
            CopyStep("tests", self.config.tests_dir),
        ]
        for lock_file in self.config.lock_files:
            if (self.package_path / lock_file).exists():
                steps.append(CopyStep("lock file", lock_file))
                break
        steps.append(CopyStep("build cache", self.config.build_cache_dir))
        return steps

    def copy_package(self) -> None:
        """Run the copy plan. Optional failures are collected into one warning."""
        for step in self.copy_plan():
            source = self.package_path / step.relative
            destination = self.working_directory / step.relative
            if not source.exists():
                if step.required:
                    if step.name == "sources":
                        msg = f"No Python files found in {step.relative}/"
                        raise NoSourceFilesError(msg)
                    msg = f"Missing required package file: {step.relative}"
                    raise PackageError(msg)
                continue
            try:
                self._copy(source, destination)
            except (OSError, shutil.Error) as exc:
                if step.required:
                    raise
                shutil.rmtree(destination, ignore_errors=True)
                self.copy_warnings.append(f"{step.name} ({step.relative}): {exc}")

        if self.copy_warnings:
            message = "Optional copy steps skipped: " + "; ".join(self.copy_warnings)
            logger.warning(message)
            if self.reporter is not None:
                self.reporter.warn(message)

    def _copy(self, source: Path, destination: Path) -> None:
        if source.is_dir():
            shutil.copytree(source, destination, symlinks=True)
        else:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, destination)

    def instrument_source_files(self) -> list[InstrumentationResult]:
        """Rewrite every source file in place; the collector goes in once."""
        files = [
            path
            for path in discover_python_files(self.source_root, self.config.instrumented_suffix)
            if path.name != RUNTIME_MODULE_FILE
        ]
        if not files:
            msg = f"No Python files found in {self.config.source_dir}/"
            raise NoSourceFilesError(msg)

        results: list[InstrumentationResult] = []
        for path in files:
            relative = path.relative_to(self.working_directory)
            try:
                source = path.read_text(encoding="utf-8")
                if contains_marker(source):
                    raise AlreadyInstrumentedError(str(relative))
                module = cst.parse_module(source)
            except (
                OSError,
                UnicodeDecodeError,
                cst.ParserSyntaxError,
                AlreadyInstrumentedError,
            ) as exc:
                logger.warning("Failed to instrument %s: %s", relative, exc)
                if self.reporter is not None:
                    self.reporter.warn(f"Failed to instrument {relative}: {exc}")
                continue

            analysis = analyze_module(module)
            if not self._collector_injected:
                (self.source_root / RUNTIME_MODULE_FILE).write_text(
                    runtime_module_source(), encoding="utf-8"
                )
                self._collector_injected = True

            session = RewriteSession(
                file_path=str(path), inject_collector=False, runtime_module=RUNTIME_MODULE
            )
            path.write_text(instrument_module(module, session).code, encoding="utf-8")
            results.append(
                InstrumentationResult(
                    original_path=str(self.package_path / relative),
                    instrumented_path=str(path),
                    async_functions=analysis.async_functions,
                    has_entry_point=analysis.has_entry_point,
                )
            )
        return results

    def resolve_entry_point(self, results: list[InstrumentationResult]) -> str | None:
        """Pick how the archive starts.

        Returns a `module:callable` for zipapp, or None when the source root
        has a `__main__.py` (existing or generated launcher).
        """
        if (self.source_root / "__main__.py").exists():
            return None

        scripts = self.manifest().get("project", {}).get("scripts", {})
        if len(scripts) == 1:
            return next(iter(scripts.values()))

        entries = [r for r in results if r.has_entry_point]
        if not entries:
            msg = "No entry point found: add a single [project.scripts] entry or a __main__ guard"
            raise EntryPointError(msg)
        if len(entries) > 1:
            names = ", ".join(Path(r.instrumented_path).name for r in entries)
            msg = f"Multiple entry points found ({names}); declare one in [project.scripts]"
            raise EntryPointError(msg)

        module = self._module_name(Path(entries[0].instrumented_path))
        (self.source_root / "__main__.py").write_text(
            LAUNCHER_TEMPLATE.format(module=module), encoding="utf-8"
        )
        return None

    def _module_name(self, path: Path) -> str:
        parts = list(path.relative_to(self.source_root).with_suffix("").parts)
        if parts[-1] == "__init__":
            parts.pop()
        return ".".join(parts)

    async def build_package(self, entry: str | None) -> str:
        """Byte-compile then archive, sharing one time budget."""
        log_path = self.config.build_log_path
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.write_text("", encoding="utf-8")
        self._notify(f"Build log: {log_path}")

        supervisor = ProcessSupervisor(
            log_path,
            timeout_s=self.config.build_timeout_s,
            heartbeat_interval_s=self.config.heartbeat_interval_s,
            progress_interval_s=self.config.progress_interval_s,
            on_diagnostic=lambda line: self._notify(f"  {line}"),
            on_heartbeat=lambda elapsed: self._notify(f"  [Still building... {int(elapsed)}s elapsed]"),
            on_progress=lambda line: self._notify(f"  [Building...] {line}"),
        )

        self.release_directory.mkdir(parents=True, exist_ok=True)
        target = self.release_directory / f"{self.project_name}.pyz"
        archive = [
            self.config.python, "-m", "zipapp", str(self.source_root),
            "-o", str(target), "-p", self.config.python,
        ]
        if entry:
            archive += ["-m", entry]
        steps = [
            [self.config.python, "-m", "compileall", "-q", str(self.source_root)],
            archive,
        ]

        deadline = time.monotonic() + self.config.build_timeout_s
        outputs: list[str] = []
        for argv in steps:
            remaining = max(deadline - time.monotonic(), 0.0)
            outcome = await supervisor.run(argv, cwd=self.working_directory, timeout_s=remaining)
            outputs.append(outcome.stdout)
            if outcome.returncode != 0:
                self._notify(f"Build failed. Check log at: {log_path}")
                raise BuildFailedError(
                    filter_diagnostics(
                        outcome.stderr or outcome.stdout, self.config.noisy_diagnostic_markers
                    )
                )

        self._notify("Build completed successfully")
        return "\n".join(o for o in outputs if o)

    def find_executable(self) -> Path:
        """Exactly one executable regular file in the release directory."""
        release = self.release_directory
        if not release.is_dir():
            msg = f"Could not find built executable in {self.config.release_dir}/"
            raise ExecutableNotFoundError(msg)

        candidates = [
            path
            for path in sorted(release.iterdir())
            if path.is_file()
            and os.access(path, os.X_OK)
            and path.suffix not in NON_EXECUTABLE_SUFFIXES
        ]
        if not candidates:
            msg = f"Could not find built executable in {self.config.release_dir}/"
            raise ExecutableNotFoundError(msg)
        if len(candidates) > 1:
            names = ", ".join(p.name for p in candidates)
            msg = f"Ambiguous executables in {self.config.release_dir}/: {names}"
            raise AmbiguousExecutableError(msg)
        return candidates[0]

    async def run_executable(self, path: Path) -> str:
        """Run the archive with the configured interpreter, merged output."""
        with self.stages.stage("run"):
            env = dict(os.environ)
            env["PYTHONUNBUFFERED"] = "1"
            proc = await asyncio.create_subprocess_exec(
                self.config.python,
                str(path),
                cwd=str(self.package_path),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            data, _ = await proc.communicate()
        output = data.decode("utf-8", errors="replace")
        if proc.returncode:
            output += f"\nProcess exited with code: {proc.returncode}"
        return output

    def cleanup(self) -> None:
        """Remove the working directory. Safe to call more than once."""
        with self.stages.stage("cleanup"):
            if self.working_directory.exists():
                shutil.rmtree(self.working_directory)

    def _notify(self, message: str) -> None:
        logger.info(message)
        if self.reporter is not None:
            self.reporter.info(message)
