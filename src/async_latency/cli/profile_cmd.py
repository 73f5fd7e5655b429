"""CLI profile command: instrument, run and report one file, directory or package."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from async_latency.core.exceptions import InputError

console = Console()


def profile_cmd(
    path: Annotated[Path, typer.Argument(help="Python file, directory or pyproject package.")],
    output_json: Annotated[bool, typer.Option("--json", help="Print results as JSON.")] = False,
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Write JSON results to this file.")
    ] = None,
    timeout: Annotated[
        float | None, typer.Option(help="Package build timeout in seconds.")
    ] = None,
) -> None:
    """Instrument async functions, run the program and report their latency."""
    from async_latency.config import Config
    from async_latency.core.instrumenter import Instrumenter
    from async_latency.reporting.console import ConsoleReporter

    config = Config()
    if timeout is not None:
        config.build_timeout_s = timeout
    config.ensure_dirs()

    # JSON mode keeps stdout machine-readable
    reporter = ConsoleReporter(Console(stderr=True) if output_json else console)
    instrumenter = Instrumenter(path, config=config, reporter=reporter)

    try:
        results = asyncio.run(instrumenter.run())
    except InputError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    if results is None:
        raise typer.Exit(code=1)

    payload = results.model_dump_json(by_alias=True, indent=2)
    if output is not None:
        output.write_text(payload + "\n", encoding="utf-8")
        reporter.info(f"Results written to {output}")
    if output_json:
        typer.echo(payload)
