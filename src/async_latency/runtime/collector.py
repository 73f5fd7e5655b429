"""Latency collector compiled into instrumented programs.

The rewriter injects this module's source (without this docstring) into
instrumented code, followed by one statement that constructs and installs
the process's collector. It therefore depends on the standard library only
and imports inside methods, so the injected definition never shadows or
relies on names in the host module.
"""


class _AsyncProfilerMetrics:
    """Lock-guarded, append-only buffer of per-call latency records.

    Records are written to a JSON sidecar file when the process exits, then
    a single marker line naming that file is printed to stdout.
    """

    MARKER = "__ASYNC_PROFILER_METRICS__"
    LEGACY_TAG = "[Latency]"

    def __init__(self, output_path):
        import threading
        import time

        self.output_path = output_path
        self.clock = time.perf_counter
        self._records = []
        self._lock = threading.Lock()
        self._flushed = False

    @classmethod
    def for_process(cls):
        """Collector writing to a pid-specific file in the temp directory."""
        import os
        import tempfile

        path = os.path.join(tempfile.gettempdir(), f"async_profile_{os.getpid()}.json")
        if os.path.exists(path):
            os.remove(path)
        return cls(path)

    def install(self):
        """Flush on interpreter exit. Returns self for chaining."""
        import atexit

        atexit.register(self.flush)
        return self

    def record(self, function, duration, line, file):
        import threading
        import time

        entry = {
            "function": function,
            "duration": duration,
            "timestamp": time.time(),
            "line": line,
            "file": file,
            "threadId": threading.get_ident(),
        }
        with self._lock:
            self._records.append(entry)

    def snapshot(self):
        with self._lock:
            return list(self._records)

    def flush(self):
        """Write the sidecar file and print the marker line.

        If the file cannot be written, every record is printed as a legacy
        `[Latency] name: seconds` line instead.
        """
        import json
        import os
        import sys

        if self._flushed:
            return None
        self._flushed = True
        entries = self.snapshot()
        sys.stderr.flush()
        sys.stdout.flush()

        try:
            with open(self.output_path, "w", encoding="utf-8") as f:
                json.dump(entries, f, indent=2, sort_keys=True)
        except OSError as exc:
            print(f"Failed to write metrics: {exc}", flush=True)
            for entry in entries:
                print(f"{self.LEGACY_TAG} {entry['function']}: {entry['duration']:.6f}s")
            sys.stdout.flush()
            return None

        sys.stdout.write(f"{self.MARKER}:{os.path.abspath(self.output_path)}\n")
        sys.stdout.flush()
        return self.output_path
