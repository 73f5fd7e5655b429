"""Custom exceptions for the instrumentation pipeline."""


class ProfilerError(Exception):
    """Base class for every error raised by async-latency."""


class InputError(ProfilerError):
    """Input path is missing or is itself a derived artifact. Fatal to the run."""


class AlreadyInstrumentedError(ProfilerError):
    """Source already carries the collector marker. The file is skipped."""

    def __init__(self, path: str) -> None:
        super().__init__(f"File is already instrumented: {path}")
        self.path = path


class CompilationError(ProfilerError):
    """Byte-compilation of an instrumented file failed."""


class PackageError(ProfilerError):
    """Package-mode stage failure."""


class NoSourceFilesError(PackageError):
    """The package has no Python files under its source directory."""


class BuildFailedError(PackageError):
    """The package build exited with a non-zero status."""

    def __init__(self, output: str) -> None:
        super().__init__(f"Package build failed:\n{output}")
        self.output = output


class BuildTimeoutError(PackageError):
    """The package build did not finish within its time bound."""

    def __init__(self, timeout_s: float) -> None:
        super().__init__(f"Build timeout after {timeout_s:g}s")
        self.timeout_s = timeout_s


class EntryPointError(PackageError):
    """No unique entry point could be resolved for the package."""


class ExecutableNotFoundError(PackageError):
    """No executable artifact was produced in the release directory."""


class AmbiguousExecutableError(ExecutableNotFoundError):
    """More than one executable artifact was found in the release directory."""
