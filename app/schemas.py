"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

# Version of the LocationsJson schema. Increment on any breaking change.
SCHEMA_VERSION = 3


class RecomputeStatus(str, Enum):
    """Outcome of a consensus recomputation for one site."""

    updated = "updated"
    ground_truth = "ground_truth"
    failed = "failed"


class StoredLocation(BaseModel):
    """Stored transmission location, unique per region and reporting point."""

    id: int = Field(..., ge=1, description="Surrogate storage key.")
    region: int
    site_id: int = Field(..., description="Reporting point identifier within the region.")
    lat: float
    lon: float
    ground_truth: bool = Field(
        default=False,
        description="Supplied from authoritative data; excluded from recomputation.",
    )


class GroundTruthRequest(BaseModel):
    """Body for setting an authoritative site location."""

    lat: float = Field(..., ge=-90.0, le=90.0)
    lon: float = Field(..., ge=-180.0, le=180.0)


class ApiLocation(BaseModel):
    """A transmission location as served to map consumers."""

    lat: float
    lon: float
    properties: Dict[str, Any] = Field(
        default_factory=dict, description="Any extra information, as long as it is valid JSON."
    )


class LocationsJson(BaseModel):
    """All transmission locations of a region, keyed by reporting point."""

    schema_version: int = SCHEMA_VERSION
    region: int
    transmission_locations: Dict[int, ApiLocation] = Field(default_factory=dict)


class RowError(BaseModel):
    """Details about a CSV row that failed validation or parsing."""

    row_number: int = Field(..., ge=1)
    reason: str


class SiteKey(BaseModel):
    region: int
    site_id: int


class RecomputeResult(BaseModel):
    """Result of recomputing the consensus location of one site."""

    region: int
    site_id: int
    status: RecomputeStatus
    sample_count: int = Field(default=0, ge=0)
    reason: Optional[str] = None
    location: Optional[StoredLocation] = None


class ImportReport(BaseModel):
    """Summary of a CSV observation import."""

    row_count: int = Field(..., ge=0, description="Number of observations accepted.")
    errors: List[RowError] = Field(default_factory=list)
    sites: List[SiteKey] = Field(default_factory=list)
    processing_ms: Optional[int] = None
    recomputed: List[RecomputeResult] = Field(default_factory=list)
