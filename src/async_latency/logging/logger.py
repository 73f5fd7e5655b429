"""JSONL run-event logger."""

import json
import time
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path


class RunLogger:
    """Append-only JSONL event log, one file per day."""

    def __init__(self, log_dir: Path, run_id: str | None = None) -> None:
        self.log_dir = log_dir
        self.run_id = run_id
        self.log_dir.mkdir(parents=True, exist_ok=True)

    @property
    def _log_file(self) -> Path:
        """Current log file (one per day)."""
        today = datetime.now(UTC).strftime("%Y-%m-%d")
        return self.log_dir / f"async-latency-{today}.jsonl"

    def log(
        self,
        event_type: str,
        data: dict,
        *,
        duration_ms: int | None = None,
    ) -> None:
        """Append one event. Write failures propagate."""
        entry = {
            "event_type": event_type,
            "data": data,
            "run_id": self.run_id,
            "duration_ms": duration_ms,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        with self._log_file.open("a") as f:
            f.write(json.dumps(entry, default=str) + "\n")

    @contextmanager
    def timed(self, event_type: str, **data):
        """Context manager that auto-captures duration and status."""
        context = {"status": "started", **data}
        start = time.monotonic()
        try:
            yield context
            context["status"] = "success"
        except Exception as e:
            context["status"] = "error"
            context["error"] = str(e)
            raise
        finally:
            duration_ms = int((time.monotonic() - start) * 1000)
            self.log(event_type, context, duration_ms=duration_ms)
