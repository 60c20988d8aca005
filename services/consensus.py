"""Consensus location inference over raw transmission observations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from models.records import ConsensusLocation, RawObservation
from services.geodesy import MEAN_EARTH_RADIUS_M, distance

logger = logging.getLogger(__name__)

# Maximum distance in meters at which a raw point still belongs to the site cluster.
SANE_INTERPOLATION_DISTANCE_M = 50.0
# WGS-84 equatorial radius, used only for the pseudo-mercator projection.
WEB_MERCATOR_RADIUS_M = 6_378_137.0


class ConsensusError(ValueError):
    """Base class for input sets that cannot produce a consensus location."""

    reason = "consensus_error"


class EmptyInputError(ConsensusError):
    reason = "empty_input"

    def __init__(self) -> None:
        super().__init__("No observations supplied.")


class RegionMismatchError(ConsensusError):
    reason = "region_mismatch"

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Expected observations from region {expected}, got region {actual}.")
        self.expected = expected
        self.actual = actual


class ReportingPointMismatchError(ConsensusError):
    reason = "reporting_point_mismatch"

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Expected observations for reporting point {expected}, got reporting point {actual}."
        )
        self.expected = expected
        self.actual = actual


class NoMatchesError(ConsensusError):
    reason = "no_matches"

    def __init__(self, sample_count: int, max_distance_m: float) -> None:
        super().__init__(
            f"All {sample_count} observations lie {max_distance_m:g} m or more from their centroid."
        )
        self.sample_count = sample_count
        self.max_distance_m = max_distance_m


@dataclass(frozen=True)
class EngineConfig:
    """Fixed numeric parameters of the engine.

    ``mean_earth_radius_m`` drives distance filtering and ``mercator_radius_m``
    drives the projection; they are intentionally different values.
    """

    max_distance_m: float = SANE_INTERPOLATION_DISTANCE_M
    mean_earth_radius_m: float = MEAN_EARTH_RADIUS_M
    mercator_radius_m: float = WEB_MERCATOR_RADIUS_M


def _mean_coordinates(samples: Sequence[RawObservation]) -> Tuple[float, float]:
    count = len(samples)
    lat = sum(sample.lat for sample in samples) / count
    lon = sum(sample.lon for sample in samples) / count
    return lat, lon


class ConsensusEngine:
    """Pure consensus component that can be unit tested in isolation.

    Holds no state beyond its configuration, so it is safe to share between
    threads recomputing different sites.
    """

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()

    def centroid(self, samples: Iterable[RawObservation]) -> Tuple[float, float]:
        """Coordinate-wise arithmetic mean of the samples."""
        materialized = list(samples)
        if not materialized:
            raise EmptyInputError()
        return _mean_coordinates(materialized)

    def filter_outliers(self, samples: Iterable[RawObservation]) -> List[RawObservation]:
        """Drop samples lying ``max_distance_m`` or further from the centroid.

        Single pass: the centroid is not recomputed after outliers are removed,
        so a heavily contaminated set can leave a biased centroid.
        """
        materialized = list(samples)
        if not materialized:
            raise EmptyInputError()

        center = _mean_coordinates(materialized)
        limit = self.config.max_distance_m
        radius = self.config.mean_earth_radius_m
        filtered = [
            sample
            for sample in materialized
            if distance(sample, center, radius=radius) < limit
        ]

        if not filtered:
            raise NoMatchesError(len(materialized), limit)
        return filtered

    def build_consensus(self, raw: Iterable[RawObservation]) -> ConsensusLocation:
        """Average the observations of a single site into one location.

        Every observation must share the first one's region and reporting
        point. Points further than ``max_distance_m`` from the raw centroid
        are discarded before averaging. The result is never ground truth.
        """
        observations = list(raw)
        if not observations:
            raise EmptyInputError()

        region = observations[0].region
        site_id = observations[0].site_id
        for observation in observations:
            if observation.region != region:
                raise RegionMismatchError(region, observation.region)
            if observation.site_id != site_id:
                raise ReportingPointMismatchError(site_id, observation.site_id)

        filtered = self.filter_outliers(observations)
        lat, lon = _mean_coordinates(filtered)

        logger.debug(
            "Consensus location computed",
            extra={
                "region": region,
                "site_id": site_id,
                "sample_count": len(observations),
                "retained_count": len(filtered),
            },
        )
        return ConsensusLocation(
            region=region,
            site_id=site_id,
            lat=lat,
            lon=lon,
            is_ground_truth=False,
        )
