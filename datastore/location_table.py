from __future__ import annotations
import json
import logging
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, Optional, Tuple

from app.schemas import StoredLocation
from models.records import ConsensusLocation
from settings import get_settings

logger = logging.getLogger(__name__)

SiteKey = Tuple[int, int]


class GroundTruthConflictError(Exception):
    """Raised when a consensus write targets a ground-truth location."""

    def __init__(self, region: int, site_id: int) -> None:
        super().__init__(
            f"Location for region {region}, reporting point {site_id} is ground truth "
            "and cannot be replaced by a consensus result."
        )
        self.region = region
        self.site_id = site_id


def _storage_key(region: int, site_id: int) -> str:
    return f"{region}/{site_id}"


class LocationTable:
    """Transmission locations keyed by the unique ``(region, site_id)`` pair."""

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._items: Dict[SiteKey, StoredLocation] = {}
        self._next_id = 1
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def upsert_consensus(self, location: ConsensusLocation) -> StoredLocation:
        """Insert or replace the inferred location of a site.

        The surrogate id of an existing row is kept. Ground-truth rows are
        never overwritten.
        """
        key = location.site_key
        with self._lock:
            existing = self._items.get(key)
            if existing is not None and existing.ground_truth:
                raise GroundTruthConflictError(location.region, location.site_id)
            stored = self._write(
                key,
                lat=location.lat,
                lon=location.lon,
                ground_truth=False,
                existing=existing,
            )
            self._persist()
            return stored.model_copy(deep=True)

    def put_ground_truth(self, region: int, site_id: int, lat: float, lon: float) -> StoredLocation:
        """Store an authoritative location, replacing whatever is there."""
        key = (region, site_id)
        with self._lock:
            stored = self._write(
                key,
                lat=lat,
                lon=lon,
                ground_truth=True,
                existing=self._items.get(key),
            )
            self._persist()
        logger.info(
            "Ground truth location stored",
            extra={"region": region, "site_id": site_id, "lat": lat, "lon": lon},
        )
        return stored.model_copy(deep=True)

    def get_item(self, region: int, site_id: int) -> Optional[StoredLocation]:
        with self._lock:
            item = self._items.get((region, site_id))
            if item is None:
                return None
            return item.model_copy(deep=True)

    def scan(self, region: Optional[int] = None) -> list[StoredLocation]:
        """Return deep copies of stored locations, optionally for one region."""

        with self._lock:
            return [
                item.model_copy(deep=True)
                for key, item in sorted(self._items.items())
                if region is None or key[0] == region
            ]

    def _write(
        self,
        key: SiteKey,
        lat: float,
        lon: float,
        ground_truth: bool,
        existing: Optional[StoredLocation],
    ) -> StoredLocation:
        if existing is None:
            item_id = self._next_id
            self._next_id += 1
        else:
            item_id = existing.id
        stored = StoredLocation(
            id=item_id,
            region=key[0],
            site_id=key[1],
            lat=lat,
            lon=lon,
            ground_truth=ground_truth,
        )
        self._items[key] = stored
        return stored

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            _storage_key(*key): item.model_dump(mode="json") for key, item in self._items.items()
        }
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            logger.warning("Ignoring unreadable location table at %s", self.persistence_path)
            data = {}

        for payload in data.values():
            item = StoredLocation.model_validate(payload)
            self._items[(item.region, item.site_id)] = item
            self._next_id = max(self._next_id, item.id + 1)


@lru_cache
def build_default_table(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> LocationTable:
    settings = get_settings()
    table_name = settings.table_name if name is None else name
    table_path = settings.table_persistence_path if path is None else path
    persistence = Path(table_path) if table_path else None
    return LocationTable(name=table_name, persistence_path=persistence)
