"""ProcessSupervisor -- run one build subprocess under a hard time bound.

Three awaitables run against the same process: a stdout drain, a stderr
drain and the exit wait. They converge under a single `asyncio.wait_for`;
a heartbeat task reports elapsed time while they run. The child is killed
on every abnormal exit from `run()`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import time
from collections.abc import Callable
from typing import IO, TYPE_CHECKING

from async_latency.build.results import ProcessOutcome
from async_latency.core.exceptions import BuildTimeoutError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

DIAGNOSTIC_PATTERN = re.compile(r"\b(error|warning)\b", re.IGNORECASE)
CHUNK_SIZE = 1 << 16


class ProcessSupervisor:
    """Supervise a subprocess: tee its output to a log, enforce a timeout."""

    def __init__(
        self,
        log_path: Path,
        *,
        timeout_s: float = 600.0,
        heartbeat_interval_s: float = 30.0,
        progress_interval_s: float = 5.0,
        on_diagnostic: Callable[[str], None] | None = None,
        on_heartbeat: Callable[[float], None] | None = None,
        on_progress: Callable[[str], None] | None = None,
    ) -> None:
        self.log_path = log_path
        self.timeout_s = timeout_s
        self.heartbeat_interval_s = heartbeat_interval_s
        self.progress_interval_s = progress_interval_s
        self.on_diagnostic = on_diagnostic
        self.on_heartbeat = on_heartbeat
        self.on_progress = on_progress

    async def run(
        self,
        argv: list[str],
        *,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        timeout_s: float | None = None,
    ) -> ProcessOutcome:
        """Run argv to completion. Raises BuildTimeoutError on timeout.

        timeout_s overrides the supervisor-wide bound for this run.
        """
        bound = self.timeout_s if timeout_s is None else timeout_s
        start = time.monotonic()
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd else None,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout_lines: list[str] = []
        stderr_lines: list[str] = []

        with self.log_path.open("a", encoding="utf-8") as log:
            log.write(f"$ {' '.join(argv)}\n")
            tasks = [
                asyncio.create_task(self._drain(proc.stdout, stdout_lines, log, is_stderr=False)),
                asyncio.create_task(self._drain(proc.stderr, stderr_lines, log, is_stderr=True)),
                asyncio.create_task(proc.wait()),
            ]
            heartbeat = asyncio.create_task(self._heartbeat(start))
            try:
                await asyncio.wait_for(asyncio.gather(*tasks), timeout=bound)
            except TimeoutError:
                logger.warning("Process %s exceeded %.1fs, killing", argv[0], bound)
                await self._terminate(proc, tasks)
                log.write(f"Timed out after {bound:g}s\n")
                raise BuildTimeoutError(bound) from None
            except BaseException:
                logger.warning("Supervising %s failed, killing", argv[0], exc_info=True)
                await self._terminate(proc, tasks)
                raise
            finally:
                heartbeat.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await heartbeat

        return ProcessOutcome(
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout="\n".join(stdout_lines),
            stderr="\n".join(stderr_lines),
            elapsed=time.monotonic() - start,
        )

    async def _terminate(self, proc: asyncio.subprocess.Process, tasks: list[asyncio.Task]) -> None:
        """Kill the child, reap it and stop every task still attached to it."""
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await proc.wait()

    async def _drain(
        self,
        stream: asyncio.StreamReader | None,
        sink: list[str],
        log: IO[str],
        *,
        is_stderr: bool,
    ) -> None:
        # Chunked reads: a single line may be arbitrarily long
        if stream is None:
            return
        last_progress = time.monotonic()
        pending = b""
        while chunk := await stream.read(CHUNK_SIZE):
            pending += chunk
            *complete, pending = pending.split(b"\n")
            for raw in complete:
                last_progress = self._emit(raw, sink, log, is_stderr, last_progress)
        if pending:
            self._emit(pending, sink, log, is_stderr, last_progress)

    def _emit(
        self, raw: bytes, sink: list[str], log: IO[str], is_stderr: bool, last_progress: float
    ) -> float:
        line = raw.decode("utf-8", errors="replace").rstrip("\r")
        sink.append(line)
        log.write(line + "\n")

        if DIAGNOSTIC_PATTERN.search(line):
            if self.on_diagnostic is not None:
                self.on_diagnostic(line)
        elif not is_stderr and self.on_progress is not None:
            now = time.monotonic()
            if now - last_progress > self.progress_interval_s:
                self.on_progress(line[:60])
                return now
        return last_progress

    async def _heartbeat(self, start: float) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval_s)
            if self.on_heartbeat is not None:
                self.on_heartbeat(time.monotonic() - start)
