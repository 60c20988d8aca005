"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status

from app.schemas import (
    SCHEMA_VERSION,
    GroundTruthRequest,
    ImportReport,
    LocationsJson,
    RecomputeResult,
    StoredLocation,
)
from services.locations import LocationService, build_default_service

router = APIRouter()


def get_service() -> LocationService:
    return build_default_service()


@router.post(
    "/observations/import",
    response_model=ImportReport,
    summary="Import a CSV of raw transmission observations.",
)
def import_observations(
    file: UploadFile = File(..., description="CSV file containing raw observations."),
    recompute: bool = Query(True, description="Recompute the touched sites after import."),
    service: LocationService = Depends(get_service),
) -> ImportReport:
    try:
        file.file.seek(0)
        contents = file.file.read()
        if isinstance(contents, str):
            contents = contents.encode("utf-8")
        return service.import_csv(contents, recompute=recompute)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    finally:
        file.file.close()


@router.post(
    "/regions/{region}/sites/{site_id}/recompute",
    response_model=RecomputeResult,
    summary="Recompute the consensus location of one reporting point.",
)
def recompute_site(
    region: int,
    site_id: int,
    service: LocationService = Depends(get_service),
) -> RecomputeResult:
    return service.recompute_site(region, site_id)


@router.get(
    "/regions/{region}/sites/{site_id}",
    response_model=StoredLocation,
    summary="Fetch the stored location of one reporting point.",
)
def get_site_location(
    region: int,
    site_id: int,
    service: LocationService = Depends(get_service),
) -> StoredLocation:
    try:
        return service.fetch_location(region, site_id)
    except KeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc.args[0]),
        ) from exc


@router.put(
    "/regions/{region}/sites/{site_id}/ground-truth",
    response_model=StoredLocation,
    summary="Set an authoritative location that recomputation never replaces.",
)
def put_ground_truth(
    region: int,
    site_id: int,
    body: GroundTruthRequest,
    service: LocationService = Depends(get_service),
) -> StoredLocation:
    return service.set_ground_truth(region, site_id, body.lat, body.lon)


@router.get(
    "/regions/{region}/locations",
    response_model=LocationsJson,
    summary="Fetch all transmission locations of a region.",
)
def get_region_locations(
    region: int,
    schema_version: Optional[int] = Query(
        None, description="Schema version the client is pinned to."
    ),
    service: LocationService = Depends(get_service),
) -> LocationsJson:
    if schema_version is not None and schema_version != SCHEMA_VERSION:
        raise HTTPException(
            status_code=status.HTTP_406_NOT_ACCEPTABLE,
            detail=f"Schema version {schema_version} is not served; current version is {SCHEMA_VERSION}.",
        )
    return service.region_locations(region)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
