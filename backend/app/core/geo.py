"""
Great-circle geometry for circular geofences (WGS84 decimal degrees, kilometers).
"""
import math
from dataclasses import dataclass

from backend.app.core.constants import EARTH_RADIUS_KM


def is_valid_coordinate(lat: float, lng: float) -> bool:
    """True when both values are finite and inside |lat| <= 90, |lng| <= 180."""
    try:
        lat_f = float(lat)
        lng_f = float(lng)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat_f) or math.isnan(lng_f):
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float

    @property
    def is_valid(self) -> bool:
        return is_valid_coordinate(self.lat, self.lng)


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    """
    Great-circle distance between two points using the haversine formula.

    Returns:
        Distance in kilometers (Earth radius 6371 km).
    """
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    dlat = lat2 - lat1
    dlng = math.radians(b.lng - a.lng)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    # Clamp rounding noise so asin stays in its domain
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(h))
