"""Orchestration of observation imports, recomputation and serving."""

from __future__ import annotations

import csv
import io
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from functools import lru_cache
from threading import Lock
from typing import Dict, Iterable, Iterator, List, Optional, Tuple
from uuid import UUID

from app.schemas import (
    ApiLocation,
    ImportReport,
    LocationsJson,
    RecomputeResult,
    RecomputeStatus,
    RowError,
    SiteKey,
    StoredLocation,
)
from datastore.location_table import GroundTruthConflictError, LocationTable, build_default_table
from models.records import RawObservation
from services.consensus import ConsensusEngine, ConsensusError, EngineConfig
from services.projection import annotate_mercator
from settings import get_settings
from storage.observation_store import ObservationStore, build_default_store

logger = logging.getLogger(__name__)

_REQUIRED_COLUMNS = ("region", "site_id", "lat", "lon", "contributor_session", "contributor")


class _RowRejected(ValueError):
    pass


class LocationService:
    """Coordinates raw observation storage, consensus recomputation and reads."""

    def __init__(
        self,
        observations: ObservationStore,
        table: LocationTable,
        engine: ConsensusEngine,
        workers: int = 4,
    ) -> None:
        self.observations = observations
        self.table = table
        self.engine = engine
        self.executor = ThreadPoolExecutor(max_workers=workers)
        self._site_locks: Dict[Tuple[int, int], Lock] = {}
        self._site_lock_users: Dict[Tuple[int, int], int] = {}
        self._site_locks_lock = Lock()

    def import_csv(self, contents: bytes, recompute: bool = False) -> ImportReport:
        """Parse a CSV of observations, store the valid rows and report errors."""
        if not contents:
            raise ValueError("Uploaded file is empty.")

        start_time = time.perf_counter()
        observations, errors = self._parse_csv(contents)
        touched = self.observations.append(observations)

        recomputed: List[RecomputeResult] = []
        if recompute and touched:
            recomputed = self.recompute_sites(touched)

        processing_ms = int((time.perf_counter() - start_time) * 1000)
        logger.info(
            "Observation import finished",
            extra={
                "row_count": len(observations),
                "error_count": len(errors),
                "processing_ms": processing_ms,
            },
        )
        return ImportReport(
            row_count=len(observations),
            errors=errors,
            sites=[SiteKey(region=region, site_id=site_id) for region, site_id in touched],
            processing_ms=processing_ms,
            recomputed=recomputed,
        )

    def record_observations(self, observations: Iterable[RawObservation]) -> List[Tuple[int, int]]:
        return self.observations.append(observations)

    def recompute_site(self, region: int, site_id: int) -> RecomputeResult:
        """Rebuild the consensus location of one site from all its observations.

        Runs under a per-site lock so concurrent writers of the same site are
        serialized.
        """
        with self._site_lock(region, site_id):
            existing = self.table.get_item(region, site_id)
            if existing is not None and existing.ground_truth:
                return self._ground_truth_result(existing)

            raw = self.observations.list_for_site(region, site_id)
            try:
                consensus = self.engine.build_consensus(raw)
            except ConsensusError as exc:
                logger.warning(
                    "Consensus recomputation failed: %s",
                    exc,
                    extra={
                        "region": region,
                        "site_id": site_id,
                        "sample_count": len(raw),
                        "reason": exc.reason,
                    },
                )
                return RecomputeResult(
                    region=region,
                    site_id=site_id,
                    status=RecomputeStatus.failed,
                    sample_count=len(raw),
                    reason=exc.reason,
                )

            try:
                stored = self.table.upsert_consensus(consensus)
            except GroundTruthConflictError:
                # Ground truth was written after the check above.
                current = self.table.get_item(region, site_id)
                if current is None or not current.ground_truth:
                    raise
                return self._ground_truth_result(current)

        logger.info(
            "Consensus location updated",
            extra={
                "region": region,
                "site_id": site_id,
                "sample_count": len(raw),
                "status": RecomputeStatus.updated.value,
            },
        )
        return RecomputeResult(
            region=region,
            site_id=site_id,
            status=RecomputeStatus.updated,
            sample_count=len(raw),
            location=stored,
        )

    def recompute_sites(self, keys: Iterable[Tuple[int, int]]) -> List[RecomputeResult]:
        """Recompute several sites in parallel; results follow the input order."""
        unique_keys = list(dict.fromkeys(keys))
        return list(
            self.executor.map(lambda key: self.recompute_site(key[0], key[1]), unique_keys)
        )

    def recompute_region(self, region: Optional[int] = None) -> List[RecomputeResult]:
        return self.recompute_sites(self.observations.list_sites(region))

    def set_ground_truth(self, region: int, site_id: int, lat: float, lon: float) -> StoredLocation:
        with self._site_lock(region, site_id):
            return self.table.put_ground_truth(region, site_id, lat, lon)

    def fetch_location(self, region: int, site_id: int) -> StoredLocation:
        result = self.table.get_item(region, site_id)
        if result is None:
            raise KeyError(f"No location stored for region {region}, reporting point {site_id}.")
        return result

    def region_locations(self, region: int) -> LocationsJson:
        """Build the served payload of a region, with mercator annotations."""
        payload = LocationsJson(region=region)
        radius = self.engine.config.mercator_radius_m
        for stored in self.table.scan(region):
            location = ApiLocation(lat=stored.lat, lon=stored.lon)
            annotate_mercator(location, radius=radius)
            payload.transmission_locations[stored.site_id] = location
        return payload

    def shutdown(self) -> None:
        """Clean up executor resources during application shutdown."""
        self.executor.shutdown(wait=False, cancel_futures=True)

    @contextmanager
    def _site_lock(self, region: int, site_id: int) -> Iterator[None]:
        key = (region, site_id)
        with self._site_locks_lock:
            lock = self._site_locks.setdefault(key, Lock())
            self._site_lock_users[key] = self._site_lock_users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            # drop the entry once no caller holds or waits on it
            with self._site_locks_lock:
                self._site_lock_users[key] -= 1
                if not self._site_lock_users[key]:
                    del self._site_lock_users[key]
                    del self._site_locks[key]

    @staticmethod
    def _ground_truth_result(stored: StoredLocation) -> RecomputeResult:
        logger.info(
            "Skipping recomputation of ground truth location",
            extra={
                "region": stored.region,
                "site_id": stored.site_id,
                "status": RecomputeStatus.ground_truth.value,
            },
        )
        return RecomputeResult(
            region=stored.region,
            site_id=stored.site_id,
            status=RecomputeStatus.ground_truth,
            location=stored,
        )

    def _parse_csv(self, contents: bytes) -> Tuple[List[RawObservation], List[RowError]]:
        try:
            text = contents.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ValueError("Uploaded file is not valid UTF-8.") from exc

        reader = csv.DictReader(io.StringIO(text))
        if not reader.fieldnames:
            raise ValueError("CSV file is missing a header row.")

        normalized = {name.lower().strip(): name for name in reader.fieldnames if name}
        missing = [column for column in _REQUIRED_COLUMNS if column not in normalized]
        if missing:
            raise ValueError(f"CSV missing required columns: {', '.join(missing)}")

        observations: List[RawObservation] = []
        errors: List[RowError] = []
        for row_number, row in enumerate(reader, start=2):
            values = {
                column: (row.get(normalized[column]) or "").strip() for column in _REQUIRED_COLUMNS
            }
            try:
                observations.append(self._parse_row(values))
            except _RowRejected as exc:
                errors.append(RowError(row_number=row_number, reason=str(exc)))
        return observations, errors

    @staticmethod
    def _parse_row(values: Dict[str, str]) -> RawObservation:
        for column in _REQUIRED_COLUMNS:
            if not values[column]:
                raise _RowRejected(f"missing {column}")

        try:
            region = int(values["region"])
            site_id = int(values["site_id"])
        except ValueError as exc:
            raise _RowRejected("invalid integer identifier") from exc

        try:
            lat = float(values["lat"])
            lon = float(values["lon"])
        except ValueError as exc:
            raise _RowRejected("invalid coordinate") from exc
        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise _RowRejected("invalid coordinate")
        if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
            raise _RowRejected("coordinate out of range")

        try:
            session = UUID(values["contributor_session"])
            contributor = UUID(values["contributor"])
        except ValueError as exc:
            raise _RowRejected("invalid uuid") from exc

        return RawObservation(
            region=region,
            site_id=site_id,
            lat=lat,
            lon=lon,
            contributor_session=session,
            contributor=contributor,
        )


@lru_cache
def build_default_service(
    workers: Optional[int] = None,
) -> LocationService:
    """Factory that wires the service with file-backed defaults."""
    settings = get_settings()
    observations = build_default_store()
    table = build_default_table()
    engine = ConsensusEngine(EngineConfig(max_distance_m=settings.max_distance_m))
    worker_count = workers or settings.recompute_workers
    return LocationService(
        observations=observations, table=table, engine=engine, workers=worker_count
    )
