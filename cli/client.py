from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the transmission locations service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.request_timeout)

    def close(self) -> None:
        self._client.close()

    def import_file(self, path: Path, recompute: bool = True) -> Dict[str, Any]:
        if not path.is_file():
            raise typer.BadParameter(f"Path {path} is not a file.")

        try:
            with path.open("rb") as handle:
                response = self._client.post(
                    "/observations/import",
                    params={"recompute": str(recompute).lower()},
                    files={"file": (path.name, handle, "text/csv")},
                )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def recompute(self, region: int, site_id: int) -> Dict[str, Any]:
        try:
            response = self._client.post(f"/regions/{region}/sites/{site_id}/recompute")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def set_ground_truth(self, region: int, site_id: int, lat: float, lon: float) -> Dict[str, Any]:
        try:
            response = self._client.put(
                f"/regions/{region}/sites/{site_id}/ground-truth",
                json={"lat": lat, "lon": lon},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def get_locations(self, region: int) -> Dict[str, Any]:
        expected = self._config.schema_version
        try:
            response = self._client.get(
                f"/regions/{region}/locations",
                params={"schema_version": expected},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        payload = response.json()
        served = payload.get("schema_version")
        if served != expected:
            typer.secho(
                f"Server sent locations schema version {served}, this client understands {expected}.",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=1)
        return payload

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except ValueError:
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
