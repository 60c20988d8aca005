from __future__ import annotations

from typing import Any, Dict, Iterable

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_recompute(payload: Dict[str, Any]) -> None:
    echo_heading("Recompute Result")
    echo_key_values(
        [
            ("region", payload.get("region")),
            ("site_id", payload.get("site_id")),
            ("status", payload.get("status")),
            ("sample_count", payload.get("sample_count")),
        ]
    )
    if payload.get("reason"):
        typer.echo(f"reason: {payload['reason']}")
    location = payload.get("location")
    if location:
        render_location(location)


def render_location(location: Dict[str, Any]) -> None:
    echo_key_values(
        [
            ("lat", location.get("lat")),
            ("lon", location.get("lon")),
            ("ground_truth", location.get("ground_truth")),
        ]
    )


def render_import(payload: Dict[str, Any]) -> None:
    echo_heading("Import Report")
    echo_key_values(
        [
            ("row_count", payload.get("row_count")),
            ("processing_ms", payload.get("processing_ms")),
        ]
    )
    sites = payload.get("sites") or []
    typer.echo(f"sites: {len(sites)}")

    errors = payload.get("errors") or []
    typer.echo()
    echo_heading("Errors")
    if errors:
        for error in errors:
            typer.echo(f"  - row {error.get('row_number')}: {error.get('reason')}")
    else:
        typer.echo("No errors recorded.")

    recomputed = payload.get("recomputed") or []
    if recomputed:
        typer.echo()
        echo_heading("Recomputed")
        for result in recomputed:
            line = f"  - {result.get('region')}/{result.get('site_id')}: {result.get('status')}"
            if result.get("reason"):
                line += f" ({result['reason']})"
            typer.echo(line)


def render_locations(payload: Dict[str, Any]) -> None:
    echo_heading(f"Region {payload.get('region')}")
    locations = payload.get("transmission_locations") or {}
    if not locations:
        typer.echo("No locations stored.")
        return
    for site_id, location in sorted(locations.items(), key=lambda item: int(item[0])):
        line = f"  - {site_id}: {location.get('lat')}, {location.get('lon')}"
        projected = (location.get("properties") or {}).get("epsg3857")
        if projected:
            line += f" (epsg3857 x={projected.get('x')}, y={projected.get('y')})"
        typer.echo(line)
