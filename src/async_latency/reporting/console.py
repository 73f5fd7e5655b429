"""Reporter protocol and the Rich console implementation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.table import Table

if TYPE_CHECKING:
    from async_latency.core.models import ProjectSummary
    from async_latency.metrics.statistics import MetricsStatistics


class Reporter(Protocol):
    """Sink for everything the pipeline shows to the user."""

    def info(self, message: str) -> None: ...

    def warn(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...

    def report_summary(self, summary: ProjectSummary) -> None: ...

    def report_execution(self, message: str) -> None: ...

    def report_program_output(self, output: str) -> None: ...

    def report_statistics(self, stats: MetricsStatistics) -> None: ...


class ConsoleReporter:
    """Render pipeline progress and results with Rich."""

    SHOWN_ROWS = 5

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def info(self, message: str) -> None:
        self.console.print(escape(message))

    def warn(self, message: str) -> None:
        self.console.print(f"[yellow]Warning:[/yellow] {escape(message)}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]Error:[/red] {escape(message)}")

    def report_summary(self, summary: ProjectSummary) -> None:
        self.console.print(
            f"[bold]Files:[/bold] {summary.total_files}  "
            f"[bold]With async:[/bold] {summary.files_with_async}  "
            f"[bold]Async functions:[/bold] {summary.total_async_functions}"
        )
        for detail in summary.file_details:
            self.console.print(f"  {escape(detail.path)} ({detail.async_function_count})")
            for name in detail.functions:
                self.console.print(f"    - {escape(name)}", style="dim")

    def report_execution(self, message: str) -> None:
        self.console.print(Rule(escape(message)))

    def report_program_output(self, output: str) -> None:
        self.console.out(output.rstrip("\n"), highlight=False)

    def report_statistics(self, stats: MetricsStatistics) -> None:
        self.console.print(Rule("Execution statistics"))
        self.console.print(f"Total function calls: {stats.total_functions}")
        self.console.print(f"Unique functions: {stats.unique_functions}")
        self.console.print(f"Total execution time: {stats.total_execution_time:.6f}s")
        self.console.print(f"Average execution time: {stats.average_execution_time:.6f}s")

        if stats.slowest_functions:
            table = Table(title="Slowest functions")
            table.add_column("#", justify="right")
            table.add_column("Function")
            table.add_column("Time (s)", justify="right")
            for i, metric in enumerate(stats.slowest_functions[: self.SHOWN_ROWS], start=1):
                table.add_row(str(i), escape(metric.name), f"{metric.total_time:.6f}")
            self.console.print(table)

        if stats.most_called_functions:
            table = Table(title="Most called functions")
            table.add_column("#", justify="right")
            table.add_column("Function")
            table.add_column("Calls", justify="right")
            for i, (name, calls) in enumerate(stats.most_called_functions[: self.SHOWN_ROWS], start=1):
                table.add_row(str(i), escape(name), str(calls))
            self.console.print(table)
