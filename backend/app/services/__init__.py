# backend/app/services/__init__.py
"""
Services layer for business logic.
Keeps API endpoints thin and business logic testable and reusable.
"""

from backend.app.services.delivery_zones import (
    ZoneRegistry,
    ZoneServiceError,
    SqlZoneStore,
    ZoneSnapshot,
    ZoneResolution,
    InvalidCoordinates,
    OutsideServiceArea,
    InvalidZoneParameters,
    DuplicateSubCity,
    ZoneNotFound,
    ZoneInUse,
)
from backend.app.services.promos import (
    PromoEvaluator,
    PromoServiceError,
    SqlPromoStore,
    PromoApplication,
    IncrementResult,
    PromoNotFound,
    PromoInactive,
    PromoNotStarted,
    PromoExpired,
    MinOrderNotMet,
    PromoExhausted,
    PerUserLimitReached,
    InvalidPromoParameters,
    DuplicatePromoCode,
    PromoInUse,
    compute_discount,
    promo_status,
)
from backend.app.services.pricing import (
    OrderEligibilityCoordinator,
    PricingServiceError,
    OrderPricingDraft,
    PricedOrder,
    InvalidOrderDraft,
    BelowMinimumOrder,
)
from backend.app.services.orders import SqlOrderStore
from backend.app.services.cache import CacheService

__all__ = [
    # Delivery zones
    "ZoneRegistry",
    "ZoneServiceError",
    "SqlZoneStore",
    "ZoneSnapshot",
    "ZoneResolution",
    "InvalidCoordinates",
    "OutsideServiceArea",
    "InvalidZoneParameters",
    "DuplicateSubCity",
    "ZoneNotFound",
    "ZoneInUse",
    # Promo codes
    "PromoEvaluator",
    "PromoServiceError",
    "SqlPromoStore",
    "PromoApplication",
    "IncrementResult",
    "PromoNotFound",
    "PromoInactive",
    "PromoNotStarted",
    "PromoExpired",
    "MinOrderNotMet",
    "PromoExhausted",
    "PerUserLimitReached",
    "InvalidPromoParameters",
    "DuplicatePromoCode",
    "PromoInUse",
    "compute_discount",
    "promo_status",
    # Pricing
    "OrderEligibilityCoordinator",
    "PricingServiceError",
    "OrderPricingDraft",
    "PricedOrder",
    "InvalidOrderDraft",
    "BelowMinimumOrder",
    # Orders
    "SqlOrderStore",
    # Cache
    "CacheService",
]
