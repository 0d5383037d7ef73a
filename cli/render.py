from __future__ import annotations

from typing import Any, Dict, Iterable, List

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_analytics(payload: Dict[str, Any]) -> None:
    echo_heading(f"Analytics (last {payload.get('period_hours')}h)")
    rows = payload.get("analytics") or []
    if not rows:
        typer.echo("No readings in this window.")
        return
    for row in rows:
        typer.echo(
            f"  - {row.get('city_name')}: "
            f"min {row.get('min_temperature')}°C, "
            f"max {row.get('max_temperature')}°C, "
            f"avg humidity {float(row.get('avg_humidity', 0.0)):.1f}%"
        )


def render_readings(title: str, readings: List[Dict[str, Any]]) -> None:
    echo_heading(title)
    if not readings:
        typer.echo("No readings recorded.")
        return
    for reading in readings:
        typer.echo(
            f"  - #{reading.get('id')} {reading.get('recorded_at')} "
            f"{reading.get('city_name')}: {reading.get('temperature_c')}°C, "
            f"{reading.get('humidity_percent')}%"
        )


def render_cycle(report: Dict[str, Any]) -> None:
    echo_heading("Ingestion Cycle")
    echo_key_values(
        [
            ("cycle_id", report.get("cycle_id")),
            ("started_at", report.get("started_at")),
            ("finished_at", report.get("finished_at")),
            ("duration_ms", report.get("duration_ms")),
            ("persisted", len(report.get("persisted_ids") or [])),
            ("published", report.get("published_count")),
        ]
    )

    failures = (report.get("fetch_failures") or []) + (report.get("persist_failures") or [])
    typer.echo()
    echo_heading("Failures")
    if failures:
        for failure in failures:
            typer.echo(f"  - {failure.get('city')}: {failure.get('reason')}")
    else:
        typer.echo("No failures recorded.")


def render_status(payload: Dict[str, Any]) -> None:
    echo_heading("Ingestion Status")
    echo_key_values(
        [
            ("state", payload.get("state")),
            ("started", payload.get("started")),
            ("interval_minutes", payload.get("interval_minutes")),
            ("tracked_cities", ", ".join(payload.get("tracked_cities") or [])),
            ("next_run_at", payload.get("next_run_at")),
        ]
    )
    last_report = payload.get("last_report")
    if last_report:
        typer.echo()
        render_cycle(last_report)
