from __future__ import annotations
import json
import logging
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from models.records import RawObservation
from settings import get_settings

logger = logging.getLogger(__name__)

SiteKey = Tuple[int, int]


def _object_key(region: int, site_id: int) -> str:
    return f"{region}/{site_id}.jsonl"


def _parse_object_key(key: str) -> Optional[SiteKey]:
    region_part, _, name = key.partition("/")
    site_part, dot, suffix = name.partition(".")
    if not dot or suffix != "jsonl":
        return None
    try:
        return int(region_part), int(site_part)
    except ValueError:
        return None


def _encode(observation: RawObservation) -> str:
    return json.dumps(
        {
            "region": observation.region,
            "site_id": observation.site_id,
            "lat": observation.lat,
            "lon": observation.lon,
            "contributor_session": str(observation.contributor_session),
            "contributor": str(observation.contributor),
        },
        sort_keys=True,
    )


def _decode(line: str) -> RawObservation:
    data = json.loads(line)
    return RawObservation(
        region=int(data["region"]),
        site_id=int(data["site_id"]),
        lat=float(data["lat"]),
        lon=float(data["lon"]),
        contributor_session=UUID(data["contributor_session"]),
        contributor=UUID(data["contributor"]),
    )


class ObservationStore:
    """Append-only raw observations, one JSON-lines object per site."""

    def __init__(self, root_path: Optional[Path] = None) -> None:
        self._objects: Dict[SiteKey, List[RawObservation]] = {}
        self.root_path = root_path
        self._lock = Lock()
        if root_path:
            root_path.mkdir(parents=True, exist_ok=True)
            self._load_existing_objects()

    def append(self, observations: Iterable[RawObservation]) -> List[SiteKey]:
        """Record observations and return the sites they touched, sorted."""
        grouped: Dict[SiteKey, List[RawObservation]] = {}
        for observation in observations:
            grouped.setdefault(observation.site_key, []).append(observation)

        with self._lock:
            for key, batch in grouped.items():
                if self.root_path:
                    path = self.root_path / _object_key(*key)
                    path.parent.mkdir(parents=True, exist_ok=True)
                    lines = "".join(_encode(observation) + "\n" for observation in batch)
                    with path.open("a", encoding="utf-8") as handle:
                        handle.write(lines)
                self._objects.setdefault(key, []).extend(batch)
        return sorted(grouped)

    def list_for_site(self, region: int, site_id: int) -> List[RawObservation]:
        """All observations recorded for a site, in insertion order."""
        with self._lock:
            return list(self._objects.get((region, site_id), ()))

    def list_sites(self, region: Optional[int] = None) -> List[SiteKey]:
        with self._lock:
            keys = list(self._objects)
        return sorted(key for key in keys if region is None or key[0] == region)

    def _load_existing_objects(self) -> None:
        assert self.root_path is not None
        for path in sorted(self.root_path.rglob("*.jsonl")):
            key = _parse_object_key(path.relative_to(self.root_path).as_posix())
            if key is None:
                continue
            try:
                lines = path.read_text(encoding="utf-8").splitlines()
            except OSError:
                logger.warning("Ignoring unreadable observation object at %s", path)
                continue

            records: List[RawObservation] = []
            for line_number, line in enumerate(lines, start=1):
                if not line.strip():
                    continue
                try:
                    records.append(_decode(line))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                    logger.warning(
                        "Skipping corrupt observation at %s line %d", path, line_number
                    )
            if records:
                self._objects[key] = records


@lru_cache
def build_default_store(root_path: Optional[str] = None) -> ObservationStore:
    settings = get_settings()
    store_root = settings.observation_root_path if root_path is None else root_path
    path = Path(store_root) if store_root else None
    return ObservationStore(root_path=path)
