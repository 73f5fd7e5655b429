"""Minimal source discovery for file, directory and package inputs."""

from __future__ import annotations

from pathlib import Path

SKIPPED_DIRS = frozenset({"__pycache__", ".build", ".git", ".venv", "venv", "node_modules"})


def is_instrumented_name(path: str | Path, suffix: str = "_instrumented") -> bool:
    return Path(path).stem.endswith(suffix)


def discover_python_files(root: str | Path, suffix: str = "_instrumented") -> list[Path]:
    """Python sources under root, sorted, skipping instrumented copies.

    A file path is returned as-is. Hidden directories and caches are skipped.
    """
    root = Path(root)
    if root.is_file():
        return [root]

    found: list[Path] = []
    for path in root.rglob("*.py"):
        relative_parts = path.relative_to(root).parts[:-1]
        if any(part in SKIPPED_DIRS or part.startswith(".") for part in relative_parts):
            continue
        if is_instrumented_name(path, suffix):
            continue
        found.append(path)
    return sorted(found)


def relative_display_path(path: str | Path, root: str | Path) -> str:
    """Path relative to root when possible, for summaries."""
    path, root = Path(path), Path(root)
    if root.is_file():
        return path.name
    try:
        return str(path.relative_to(root))
    except ValueError:
        return str(path)
