"""Pseudo-mercator (EPSG:3857) annotation of served locations."""

from __future__ import annotations

import logging
import math
from typing import Optional, Tuple

from app.schemas import ApiLocation
from services.consensus import WEB_MERCATOR_RADIUS_M

logger = logging.getLogger(__name__)

EPSG3857_PROPERTY = "epsg3857"


def to_web_mercator(
    lat: float, lon: float, radius: float = WEB_MERCATOR_RADIUS_M
) -> Optional[Tuple[float, float]]:
    """Project degrees to EPSG:3857 meters, or ``None`` when not representable."""
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None
    # tan() diverges at the poles
    if abs(lat) >= 90.0:
        return None

    x = radius * math.radians(lon)
    try:
        y = radius * math.log(math.tan(math.radians(lat) / 2 + math.pi / 4))
    except (ValueError, OverflowError):
        return None

    if not (math.isfinite(x) and math.isfinite(y)):
        return None
    return x, y


def annotate_mercator(location: ApiLocation, radius: float = WEB_MERCATOR_RADIUS_M) -> bool:
    """Store the EPSG:3857 pair under ``properties["epsg3857"]``.

    Best effort: on failure the properties are left untouched, a warning is
    logged and ``False`` is returned.
    """
    projected = to_web_mercator(location.lat, location.lon, radius=radius)
    if projected is None:
        logger.warning(
            "epsg3857 property update skipped: coordinates cannot be projected",
            extra={"lat": location.lat, "lon": location.lon},
        )
        return False

    x, y = projected
    location.properties[EPSG3857_PROPERTY] = {"x": x, "y": y}
    return True
