"""
Shared constants for the backend application.
"""
from decimal import Decimal

# ---------------------------------------------------------------------------
# Order statuses
# ---------------------------------------------------------------------------
ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_CANCELLED = "cancelled"

# ---------------------------------------------------------------------------
# Decimal helpers
# ---------------------------------------------------------------------------
ZERO = Decimal("0")
ONE_CENT = Decimal("0.01")
PERCENT_BASE = Decimal("100")

# ---------------------------------------------------------------------------
# Geofence limits
# ---------------------------------------------------------------------------
EARTH_RADIUS_KM = 6371.0
MIN_RADIUS_KM = 0.5
MAX_RADIUS_KM = 20.0
DEFAULT_RADIUS_KM = 3.0

# ---------------------------------------------------------------------------
# Promo codes
# ---------------------------------------------------------------------------
DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_FIXED = "FIXED"
DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)
MAX_PROMO_CODE_LENGTH = 50

# ---------------------------------------------------------------------------
# Addis Ababa sub-cities: center coordinates and default geofence radius
# ---------------------------------------------------------------------------
SUB_CITY_PRESETS = {
    "Bole": {"lat": 8.9806, "lng": 38.7578, "radius": 4.0},
    "Kirkos": {"lat": 9.0084, "lng": 38.7500, "radius": 2.5},
    "Arada": {"lat": 9.0350, "lng": 38.7468, "radius": 2.0},
    "Addis Ketema": {"lat": 9.0300, "lng": 38.7350, "radius": 2.0},
    "Lideta": {"lat": 9.0150, "lng": 38.7300, "radius": 2.0},
    "Kolfe Keranio": {"lat": 9.0200, "lng": 38.7100, "radius": 4.5},
    "Gulele": {"lat": 9.0600, "lng": 38.7350, "radius": 3.5},
    "Yeka": {"lat": 9.0400, "lng": 38.7800, "radius": 4.0},
    "Nifas Silk-Lafto": {"lat": 8.9600, "lng": 38.7200, "radius": 4.0},
    "Akaki Kality": {"lat": 8.8900, "lng": 38.7400, "radius": 5.0},
    "Lemi Kura": {"lat": 8.9200, "lng": 38.8100, "radius": 3.5},
}

SUB_CITIES = tuple(SUB_CITY_PRESETS)
