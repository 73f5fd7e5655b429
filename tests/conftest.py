"""Shared fixtures for all test modules."""

import textwrap
from pathlib import Path

import pytest

from async_latency.config import Config
from async_latency.logging.logger import RunLogger


@pytest.fixture
def tmp_config(tmp_path):
    """Config pointing to temp directories -- fresh logs and work root per test."""
    config = Config(base_dir=tmp_path / ".async-latency", work_root=tmp_path / "work")
    config.ensure_dirs()
    config.work_root.mkdir()
    return config


@pytest.fixture
def run_logger(tmp_config):
    """RunLogger writing to the temp log dir."""
    return RunLogger(tmp_config.log_dir, run_id="test-run")


class RecordingReporter:
    """Reporter that keeps every message for assertions."""

    def __init__(self) -> None:
        self.infos: list[str] = []
        self.warnings: list[str] = []
        self.errors: list[str] = []
        self.summaries: list = []
        self.executions: list[str] = []
        self.outputs: list[str] = []
        self.statistics: list = []

    def info(self, message: str) -> None:
        self.infos.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def error(self, message: str) -> None:
        self.errors.append(message)

    def report_summary(self, summary) -> None:
        self.summaries.append(summary)

    def report_execution(self, message: str) -> None:
        self.executions.append(message)

    def report_program_output(self, output: str) -> None:
        self.outputs.append(output)

    def report_statistics(self, stats) -> None:
        self.statistics.append(stats)


@pytest.fixture
def reporter():
    return RecordingReporter()


def write_source(path: Path, source: str) -> Path:
    """Write dedented source, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(source).lstrip("\n"), encoding="utf-8")
    return path


# -----------------------------------------------------------------------
# Package-mode fixtures
# -----------------------------------------------------------------------

PACKAGE_FILES = {
    "src/app/__init__.py": '"""Demo app."""\n',
    "src/app/main.py": """
        import asyncio

        from app.service import load_dashboard


        async def main():
            users = await load_dashboard()
            print(f"loaded {len(users)} users")


        if __name__ == "__main__":
            asyncio.run(main())
    """,
    "src/app/service.py": """
        from app.repo import fetch_users
        from app.util import shout


        async def load_dashboard():
            users = await fetch_users()
            return [shout(u) for u in users]
    """,
    "src/app/repo.py": """
        import asyncio


        class UserRepo:
            async def all(self):
                await asyncio.sleep(0.01)
                return ["ada", "grace"]


        async def fetch_users():
            return await UserRepo().all()
    """,
    "src/app/util.py": """
        def shout(name):
            return name.upper()
    """,
}


def make_package(root: Path, *, files: dict[str, str] | None = None, manifest: str | None = None) -> Path:
    """Write a small pyproject package under root."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "pyproject.toml").write_text(
        manifest or '[project]\nname = "demo-app"\nversion = "0.1.0"\n', encoding="utf-8"
    )
    for relative, source in (PACKAGE_FILES if files is None else files).items():
        write_source(root / relative, source)
    return root


@pytest.fixture
def package_dir(tmp_path):
    """Five-file package with a single `__main__` guard in app/main.py."""
    return make_package(tmp_path / "demo")
