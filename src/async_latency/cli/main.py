"""Root Typer app for the async-latency CLI."""

from __future__ import annotations

import typer

app = typer.Typer(
    name="async-latency",
    help="async-latency: Measure the wall-clock latency of async functions.",
)


def _register_commands() -> None:
    """Register all CLI commands."""
    from async_latency.cli.profile_cmd import profile_cmd

    app.command(name="profile")(profile_cmd)


_register_commands()
