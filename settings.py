from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_OBSERVATION_ROOT_ENV = "OBSERVATION_STORE_ROOT_PATH"
_TABLE_NAME_ENV = "LOCATION_TABLE_NAME"
_TABLE_PATH_ENV = "LOCATION_TABLE_PERSISTENCE_PATH"
_MAX_DISTANCE_ENV = "CONSENSUS_MAX_DISTANCE_M"
_WORKER_COUNT_ENV = "RECOMPUTE_WORKER_COUNT"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    observation_root_path: Optional[str]
    table_name: str
    table_persistence_path: Optional[str]
    max_distance_m: float
    recompute_workers: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_worker_count(default: int) -> int:
    value = os.getenv(_WORKER_COUNT_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_max_distance(default: float) -> float:
    value = os.getenv(_MAX_DISTANCE_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    # nan fails this comparison too
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        observation_root_path=_read_optional_env(_OBSERVATION_ROOT_ENV, "./tmp/observations"),
        table_name=_read_str_env(_TABLE_NAME_ENV, "transmission_locations"),
        table_persistence_path=_read_optional_env(_TABLE_PATH_ENV, "./tmp/locations.json"),
        max_distance_m=_read_max_distance(50.0),
        recompute_workers=_read_worker_count(4),
        log_level=_read_log_level("INFO"),
    )
