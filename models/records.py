"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from services.geodesy import DistanceMixin


@dataclass(frozen=True, slots=True)
class RawObservation(DistanceMixin):
    """One position sample contributed for a transmission site."""

    region: int
    site_id: int
    lat: float
    lon: float
    contributor_session: UUID
    contributor: UUID

    @property
    def site_key(self) -> tuple[int, int]:
        return (self.region, self.site_id)


@dataclass(frozen=True, slots=True)
class ConsensusLocation(DistanceMixin):
    """Authoritative coordinate for one ``(region, site_id)`` pair.

    ``is_ground_truth`` marks locations supplied from an authoritative source;
    those are never replaced by a recomputed consensus.
    """

    region: int
    site_id: int
    lat: float
    lon: float
    is_ground_truth: bool = False

    @property
    def site_key(self) -> tuple[int, int]:
        return (self.region, self.site_id)
