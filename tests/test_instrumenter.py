"""End-to-end tests for the orchestrating controller."""

import json

import pytest
from conftest import make_package, write_source

from async_latency.core.exceptions import InputError
from async_latency.core.instrumenter import Instrumenter
from async_latency.rewriting.rewriter import MARKER_IDENTIFIER

FETCH_USERS = """
    import asyncio


    async def fetchUsers():
        await asyncio.sleep(0.1)
        return ["ada", "grace"]


    if __name__ == "__main__":
        asyncio.run(fetchUsers())
"""


@pytest.fixture
def instrumenter_for(tmp_config, reporter, run_logger):
    def build(path):
        return Instrumenter(path, config=tmp_config, reporter=reporter, run_logger=run_logger)

    return build


class TestValidation:
    async def test_missing_path(self, instrumenter_for, tmp_path):
        """A path that does not exist is an input error."""
        with pytest.raises(InputError, match="does not exist"):
            await instrumenter_for(tmp_path / "nope.py").run()

    async def test_instrumented_input_rejected(self, instrumenter_for, tmp_path):
        """Derived `_instrumented` files are refused outright."""
        path = write_source(tmp_path / "app_instrumented.py", "print(1)\n")
        with pytest.raises(InputError, match="already-instrumented"):
            await instrumenter_for(path).run()

    async def test_instrumented_directory_rejected(self, instrumenter_for, tmp_path):
        """The naming guard applies to directories as well as files."""
        root = write_source(tmp_path / "proj_instrumented" / "app.py", "print(1)\n").parent
        with pytest.raises(InputError, match="already-instrumented"):
            await instrumenter_for(root).run()


class TestFileMode:
    async def test_fetch_users_scenario(self, instrumenter_for, tmp_path, reporter):
        """One async function, one suspension, ~0.1s measured at depth 1."""
        path = write_source(tmp_path / "users.py", FETCH_USERS)

        results = await instrumenter_for(path).run()

        assert results is not None
        assert results.summary.total_async_functions == 1
        assert results.summary.total_files == 1
        assert results.summary.file_details[0].functions == ["fetchUsers"]
        (metric,) = results.execution_metrics
        assert metric.name == "fetchUsers"
        assert metric.total_time == pytest.approx(0.1, abs=0.08)
        assert metric.depth == 1
        assert (tmp_path / "users_instrumented.py").exists()
        assert reporter.statistics[0].total_functions == 1

    async def test_json_shape(self, instrumenter_for, tmp_path):
        """The exported result uses the camelCase public field names."""
        path = write_source(tmp_path / "users.py", FETCH_USERS)
        results = await instrumenter_for(path).run()
        data = json.loads(results.model_dump_json(by_alias=True))
        assert set(data) == {"summary", "executionMetrics", "timestamp"}
        assert set(data["summary"]) == {
            "totalFiles", "filesWithAsync", "totalAsyncFunctions", "fileDetails"
        }
        assert data["summary"]["fileDetails"][0]["asyncFunctionCount"] == 1
        assert set(data["executionMetrics"][0]) >= {"name", "totalTime", "depth"}

    async def test_directory_runs_entry_files_sequentially(self, instrumenter_for, tmp_path, reporter):
        """Only entry-point files run; all share one metrics accumulator."""
        write_source(tmp_path / "proj" / "first.py", FETCH_USERS)
        write_source(
            tmp_path / "proj" / "second.py",
            """
            import asyncio


            async def main():
                await asyncio.sleep(0)


            if __name__ == "__main__":
                asyncio.run(main())
            """,
        )
        write_source(tmp_path / "proj" / "lib.py", "async def unused():\n    pass\n")

        results = await instrumenter_for(tmp_path / "proj").run()

        assert [m.name for m in results.execution_metrics] == ["fetchUsers", "main"]
        assert results.summary.total_files == 3
        assert results.summary.total_async_functions == 3
        assert len(reporter.executions) == 2
        assert (tmp_path / "proj" / "lib_instrumented.py").exists()

    async def test_rerun_skips_instrumented_outputs(self, instrumenter_for, tmp_path, reporter):
        """A second run overwrites outputs instead of instrumenting them."""
        path = write_source(tmp_path / "proj" / "users.py", FETCH_USERS)
        await instrumenter_for(path.parent).run()
        results = await instrumenter_for(path.parent).run()
        assert results.summary.total_files == 1
        assert any("Overwriting" in w for w in reporter.warnings)

    async def test_already_instrumented_source_skipped(self, instrumenter_for, tmp_path, reporter):
        """A source already carrying the marker is skipped with a warning."""
        path = write_source(tmp_path / "done.py", f"{MARKER_IDENTIFIER} = None\n")
        results = await instrumenter_for(path).run()
        assert results.summary.total_files == 0
        assert any("already instrumented" in w for w in reporter.warnings)

    async def test_unparsable_file_skipped(self, instrumenter_for, tmp_path, reporter):
        """Syntax errors skip the file and keep the batch going."""
        write_source(tmp_path / "proj" / "bad.py", "async def broken(:\n")
        write_source(tmp_path / "proj" / "good.py", "async def fine():\n    pass\n")
        results = await instrumenter_for(tmp_path / "proj").run()
        assert results.summary.total_files == 1
        assert any("bad.py" in w for w in reporter.warnings)
        assert results.execution_metrics == []

    async def test_no_entry_point_reported(self, instrumenter_for, tmp_path, reporter):
        """Without a `__main__` guard nothing runs and the user is told why."""
        path = write_source(tmp_path / "lib.py", "async def f():\n    pass\n")
        results = await instrumenter_for(path).run()
        assert results.summary.total_files == 1
        assert reporter.executions == []
        assert any("No executable files found" in m for m in reporter.infos)
        assert (tmp_path / "lib_instrumented.py").exists()

    async def test_stage_events_logged(self, instrumenter_for, tmp_config, tmp_path):
        """Each file instrumentation and run is timed in the JSONL log."""
        path = write_source(tmp_path / "users.py", FETCH_USERS)
        await instrumenter_for(path).run()
        log_file = next(tmp_config.log_dir.glob("async-latency-*.jsonl"))
        events = [json.loads(line)["event_type"] for line in log_file.read_text().splitlines()]
        assert "instrument.file" in events
        assert "compile.run" in events


class TestPackageMode:
    async def test_package_run(self, instrumenter_for, tmp_config, package_dir):
        """Package mode builds once, runs once and cleans up."""
        results = await instrumenter_for(package_dir).run()

        assert results is not None
        assert results.summary.total_files == 5
        assert results.summary.total_async_functions == 4
        assert sorted(m.name for m in results.execution_metrics) == [
            "all", "fetch_users", "load_dashboard", "main"
        ]
        assert list(tmp_config.work_root.glob("async_profiler_*")) == []
        assert not list(package_dir.rglob("*_instrumented.py"))

    async def test_package_failure_returns_none(self, instrumenter_for, tmp_config, tmp_path, reporter):
        """Stage failures are reported and end the run without raising."""
        root = make_package(tmp_path / "lib", files={"src/lib/core.py": "async def f():\n    pass\n"})
        assert await instrumenter_for(root).run() is None
        assert any("entry point" in e for e in reporter.errors)
        assert list(tmp_config.work_root.glob("async_profiler_*")) == []
