"""Tests for the runtime latency collector."""

import json
import os
import threading

from async_latency.metrics.parser import MetricsParser, extract_metrics_path
from async_latency.runtime.collector import _AsyncProfilerMetrics


class TestRecording:
    def test_record_appends_raw_entry(self, tmp_path):
        """record() stores the full wire-format entry."""
        collector = _AsyncProfilerMetrics(str(tmp_path / "m.json"))
        collector.record("fetchUser", 0.25, 12, "svc.py")
        (entry,) = collector.snapshot()
        assert entry["function"] == "fetchUser"
        assert entry["duration"] == 0.25
        assert entry["line"] == 12
        assert entry["file"] == "svc.py"
        assert entry["threadId"] == threading.get_ident()
        assert entry["timestamp"] > 0

    def test_duplicates_retained(self, tmp_path):
        """Repeated calls produce one record each."""
        collector = _AsyncProfilerMetrics(str(tmp_path / "m.json"))
        for _ in range(3):
            collector.record("poll", 0.01, 1, "a.py")
        assert len(collector.snapshot()) == 3

    def test_concurrent_records_not_lost(self, tmp_path):
        """The lock serialises appends from many threads."""
        collector = _AsyncProfilerMetrics(str(tmp_path / "m.json"))

        def work():
            for _ in range(250):
                collector.record("job", 0.001, 1, "a.py")

        threads = [threading.Thread(target=work) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(collector.snapshot()) == 1000

    def test_clock_is_monotonic(self, tmp_path):
        """clock() never goes backwards."""
        collector = _AsyncProfilerMetrics(str(tmp_path / "m.json"))
        first = collector.clock()
        assert collector.clock() >= first

    def test_for_process_uses_pid(self):
        """The default sidecar path is process-specific."""
        collector = _AsyncProfilerMetrics.for_process()
        assert collector.output_path.endswith(f"async_profile_{os.getpid()}.json")


class TestFlush:
    def test_flush_writes_sidecar_and_marker(self, tmp_path, capsys):
        """flush() writes sorted JSON and prints a single marker line."""
        path = tmp_path / "m.json"
        collector = _AsyncProfilerMetrics(str(path))
        collector.record("fetchUser", 0.1, 3, "svc.py")

        assert collector.flush() == str(path)

        out = capsys.readouterr().out
        assert out.count("__ASYNC_PROFILER_METRICS__:") == 1
        assert extract_metrics_path(out) == os.path.abspath(path)
        data = json.loads(path.read_text())
        assert data[0]["function"] == "fetchUser"
        assert list(data[0]) == sorted(data[0])

    def test_flush_runs_once(self, tmp_path, capsys):
        """A second flush is a no-op."""
        collector = _AsyncProfilerMetrics(str(tmp_path / "m.json"))
        collector.flush()
        capsys.readouterr()
        assert collector.flush() is None
        assert capsys.readouterr().out == ""

    def test_unwritable_sidecar_falls_back_to_legacy_lines(self, tmp_path, capsys):
        """If the file cannot be written, legacy lines feed the text parser."""
        collector = _AsyncProfilerMetrics(str(tmp_path / "missing" / "m.json"))
        collector.record("fetchUser", 0.106556, 3, "svc.py")

        assert collector.flush() is None

        out = capsys.readouterr().out
        assert "__ASYNC_PROFILER_METRICS__" not in out
        assert "[Latency] fetchUser: 0.106556s" in out
        metrics, structured = MetricsParser().parse_output(out)
        assert structured is False
        assert [(m.name, m.total_time) for m in metrics] == [("fetchUser", 0.106556)]
