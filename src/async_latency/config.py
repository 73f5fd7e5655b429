"""Configuration management for async-latency."""

import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Config:
    """Central configuration with path properties and build limits."""

    base_dir: Path = field(default_factory=lambda: Path.home() / ".async-latency")
    work_root: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))

    # Interpreter used to compile, build and run instrumented code
    python: str = sys.executable

    # Build supervision
    build_timeout_s: float = 600.0
    heartbeat_interval_s: float = 30.0
    progress_interval_s: float = 5.0

    # Naming
    instrumented_suffix: str = "_instrumented"
    manifest_name: str = "pyproject.toml"

    # Package layout
    source_dir: str = "src"
    tests_dir: str = "tests"
    build_cache_dir: str = ".build"
    release_dir: str = ".build/release"
    lock_files: tuple[str, ...] = ("uv.lock", "poetry.lock", "pdm.lock", "requirements.lock")

    # Diagnostic lines dropped before compiler output is shown
    noisy_diagnostic_markers: tuple[str, ...] = ("PYTHONASYNCIODEBUG",)

    @property
    def log_dir(self) -> Path:
        return self.base_dir / "logs"

    @property
    def build_log_path(self) -> Path:
        return self.log_dir / "build.log"

    def ensure_dirs(self) -> None:
        """Create directory tree if it doesn't exist."""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)
