from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_analytics, render_cycle, render_readings, render_status


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the city weather monitor service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Weather monitor API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each API request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("analytics")
def analytics_command(
    ctx: typer.Context,
    hours: int = typer.Option(24, "--hours", "-H", help="Trailing window in hours (1-168)."),
) -> None:
    """Show min/max temperature and average humidity per city."""
    state = _get_state(ctx)
    render_analytics(state.client.get_analytics(hours))


@app.command("recent")
def recent_command(
    ctx: typer.Context,
    limit: int = typer.Option(10, "--limit", "-n", help="Number of readings to show."),
) -> None:
    """List the most recent readings across all cities."""
    state = _get_state(ctx)
    render_readings("Recent Readings", state.client.get_recent(limit))


@app.command("city")
def city_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Tracked city name."),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of readings to show."),
) -> None:
    """List the most recent readings for one city."""
    state = _get_state(ctx)
    render_readings(f"Readings for {name}", state.client.get_city_readings(name, limit))


@app.command("ingest")
def ingest_command(ctx: typer.Context) -> None:
    """Run an ingestion cycle now and show its report."""
    state = _get_state(ctx)
    typer.echo(f"Triggering ingestion on {state.config.base_url} ...")
    report = state.client.trigger_ingestion()
    typer.secho("Ingestion cycle finished.", fg=typer.colors.GREEN)
    render_cycle(report)


@app.command("status")
def status_command(ctx: typer.Context) -> None:
    """Show scheduler state and the last cycle report."""
    state = _get_state(ctx)
    render_status(state.client.get_status())
