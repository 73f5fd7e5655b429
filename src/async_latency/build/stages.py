"""Stage tracking shared by the single-file and package pipelines."""

from __future__ import annotations

from contextlib import contextmanager
from enum import StrEnum


class StageStatus(StrEnum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StageTracker:
    """Ordered stage -> status map for one pipeline run."""

    def __init__(self, stages: list[str]) -> None:
        self.statuses: dict[str, StageStatus] = {name: StageStatus.NOT_STARTED for name in stages}

    @contextmanager
    def stage(self, name: str):
        """Mark a stage running, then succeeded or failed depending on the block."""
        self.statuses[name] = StageStatus.RUNNING
        try:
            yield
        except BaseException:
            self.statuses[name] = StageStatus.FAILED
            raise
        self.statuses[name] = StageStatus.SUCCEEDED

    def status(self, name: str) -> StageStatus:
        return self.statuses.get(name, StageStatus.NOT_STARTED)

    @property
    def failed(self) -> list[str]:
        return [name for name, status in self.statuses.items() if status is StageStatus.FAILED]
