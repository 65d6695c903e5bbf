"""Great-circle distances between pickup points and a driver's position."""

from math import radians, cos, sin, asin, sqrt
from typing import Any, Optional, Tuple

EARTH_RADIUS_KM = 6371.0

Coordinates = Tuple[float, float]


def parse_coordinates(latitude: Any, longitude: Any) -> Optional[Coordinates]:
    """(lat, lon) as floats, or None when either is missing, not numeric or out of range."""
    if latitude in (None, "") or longitude in (None, ""):
        return None
    try:
        lat, lon = float(latitude), float(longitude)
    except (TypeError, ValueError):
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    return lat, lon


def distance_km(origin: Coordinates, destination: Coordinates) -> float:
    """Haversine distance in kilometres."""
    lat1, lon1, lat2, lon2 = map(radians, (*origin, *destination))
    a = sin((lat2 - lat1) / 2) ** 2 + cos(lat1) * cos(lat2) * sin((lon2 - lon1) / 2) ** 2
    return 2 * asin(sqrt(a)) * EARTH_RADIUS_KM
