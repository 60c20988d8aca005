from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_import, render_locations, render_location, render_recompute


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for interacting with the transmission locations service.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Service base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, request_timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("import")
def import_command(
    ctx: typer.Context,
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Path to CSV file."),
    recompute: bool = typer.Option(
        True,
        "--recompute/--no-recompute",
        help="Recompute consensus locations of the imported sites.",
    ),
) -> None:
    """Import a CSV of raw observations."""
    state = _get_state(ctx)
    typer.echo(f"Importing {file} to {state.config.base_url} ...")
    payload = state.client.import_file(file, recompute=recompute)
    render_import(payload)


@app.command("recompute")
def recompute_command(
    ctx: typer.Context,
    region: int = typer.Argument(..., help="Region identifier."),
    site_id: int = typer.Argument(..., help="Reporting point identifier."),
) -> None:
    """Recompute the consensus location of one site."""
    state = _get_state(ctx)
    payload = state.client.recompute(region, site_id)
    render_recompute(payload)
    if payload.get("status") == "failed":
        raise typer.Exit(code=2)


@app.command("ground-truth")
def ground_truth_command(
    ctx: typer.Context,
    region: int = typer.Argument(..., help="Region identifier."),
    site_id: int = typer.Argument(..., help="Reporting point identifier."),
    lat: float = typer.Argument(..., min=-90.0, max=90.0, help="Latitude in degrees."),
    lon: float = typer.Argument(..., min=-180.0, max=180.0, help="Longitude in degrees."),
) -> None:
    """Store an authoritative location for a site."""
    state = _get_state(ctx)
    payload = state.client.set_ground_truth(region, site_id, lat, lon)
    typer.secho("Ground truth stored.", fg=typer.colors.GREEN)
    render_location(payload)


@app.command("locations")
def locations_command(
    ctx: typer.Context,
    region: int = typer.Argument(..., help="Region identifier."),
) -> None:
    """List the served locations of a region."""
    state = _get_state(ctx)
    payload = state.client.get_locations(region)
    render_locations(payload)
