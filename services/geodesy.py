"""Great-circle distance between geo-referenced values."""

from __future__ import annotations

import math
from typing import Protocol, Tuple, Union, runtime_checkable

# Mean earth radius, used for distances between GPS points.
MEAN_EARTH_RADIUS_M = 6_371_000.0


@runtime_checkable
class Positioned(Protocol):
    """Anything carrying a latitude/longitude pair in decimal degrees."""

    lat: float
    lon: float


Coordinates = Tuple[float, float]
PointLike = Union[Coordinates, Positioned]


def as_coordinates(point: PointLike) -> Coordinates:
    """Normalise a ``(lat, lon)`` tuple or a positioned record to a tuple."""
    if isinstance(point, tuple):
        lat, lon = point
        return float(lat), float(lon)
    return float(point.lat), float(point.lon)


def distance(a: PointLike, b: PointLike, radius: float = MEAN_EARTH_RADIUS_M) -> float:
    """Haversine distance in meters between two points given in degrees."""
    lat1, lon1 = as_coordinates(a)
    lat2, lon2 = as_coordinates(b)
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = math.radians(lon2) - math.radians(lon1)

    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # rounding can push h just outside [0, 1] for near-antipodal points
    h = min(1.0, max(0.0, h))
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return radius * c


class DistanceMixin:
    """Gives positioned records a ``distance_to`` method."""

    __slots__ = ()

    def distance_to(self, other: PointLike, radius: float = MEAN_EARTH_RADIUS_M) -> float:
        return distance(self, other, radius=radius)  # type: ignore[arg-type]
