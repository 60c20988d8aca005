from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from app.schemas import SCHEMA_VERSION

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 30.0

_BASE_URL_ENV = "API_BASE_URL"
_TIMEOUT_ENV = "CLI_REQUEST_TIMEOUT"


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = DEFAULT_TIMEOUT
    schema_version: int = SCHEMA_VERSION


def _read_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def load_config(
    base_url: Optional[str] = None,
    request_timeout: Optional[float] = None,
) -> CLIConfig:
    url = base_url or os.getenv(_BASE_URL_ENV) or DEFAULT_BASE_URL
    if request_timeout is None:
        request_timeout = _read_float(os.getenv(_TIMEOUT_ENV), DEFAULT_TIMEOUT)
    return CLIConfig(
        base_url=url.rstrip("/"),
        request_timeout=request_timeout,
    )
