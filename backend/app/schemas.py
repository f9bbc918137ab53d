from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime

from backend.app.core.constants import DISCOUNT_TYPES, MAX_PROMO_CODE_LENGTH


# --- Delivery zones ---
class ZoneCreate(BaseModel):
    sub_city: str
    name: Optional[str] = None
    name_am: Optional[str] = None
    center_lat: Optional[float] = None
    center_lng: Optional[float] = None
    radius_km: Optional[float] = None
    delivery_fee: Decimal = Decimal("30")
    min_order_amount: Decimal = Decimal("100")
    estimated_min_minutes: int = 15
    estimated_max_minutes: int = 30
    is_active: bool = True
    # Fill center/radius from the sub-city preset when not given
    use_preset: bool = False


class ZoneUpdate(BaseModel):
    # Accepted only to report an immutable-field error when it differs
    sub_city: Optional[str] = None
    name: Optional[str] = None
    name_am: Optional[str] = None
    center_lat: Optional[float] = None
    center_lng: Optional[float] = None
    radius_km: Optional[float] = None
    delivery_fee: Optional[Decimal] = None
    min_order_amount: Optional[Decimal] = None
    estimated_min_minutes: Optional[int] = None
    estimated_max_minutes: Optional[int] = None
    is_active: Optional[bool] = None


class ZoneFeeUpdate(BaseModel):
    delivery_fee: Decimal
    min_order_amount: Optional[Decimal] = None


class ZoneResponse(BaseModel):
    id: int
    name: str
    name_am: Optional[str] = None
    sub_city: str
    center_lat: Optional[float] = None
    center_lng: Optional[float] = None
    radius_km: float
    delivery_fee: float
    min_order_amount: float
    estimated_min_minutes: int
    estimated_max_minutes: int
    is_active: bool
    is_geofenced: bool


class ZoneSummaryResponse(BaseModel):
    total: int
    active: int
    geofenced: int
    average_delivery_fee: float


class ResolveRequest(BaseModel):
    lat: float
    lng: float


class ZoneResolutionResponse(BaseModel):
    zone_id: int
    zone_name: str
    sub_city: str
    distance_km: float
    delivery_fee: float
    min_order_amount: float
    eta_range: List[int]


# --- Promo codes ---
class PromoCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=MAX_PROMO_CODE_LENGTH)
    title: str
    title_am: Optional[str] = None
    description: Optional[str] = None
    description_am: Optional[str] = None
    discount_type: str
    discount_value: Decimal
    min_order_amount: Decimal = Decimal("0")
    max_discount: Optional[Decimal] = None
    max_uses: Optional[int] = None
    max_uses_per_user: int = 1
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool = True

    @field_validator("discount_type")
    @classmethod
    def normalize_discount_type(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in DISCOUNT_TYPES:
            raise ValueError(f"discount_type must be one of {', '.join(DISCOUNT_TYPES)}")
        return v


class PromoUpdate(BaseModel):
    # code / discount_type are frozen; a differing value is rejected by the service
    model_config = ConfigDict(extra="forbid")

    code: Optional[str] = None
    discount_type: Optional[str] = None
    title: Optional[str] = None
    title_am: Optional[str] = None
    description: Optional[str] = None
    description_am: Optional[str] = None
    discount_value: Optional[Decimal] = None
    min_order_amount: Optional[Decimal] = None
    max_discount: Optional[Decimal] = None
    max_uses: Optional[int] = None
    max_uses_per_user: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None


class PromoResponse(BaseModel):
    id: int
    code: str
    title: str
    title_am: Optional[str] = None
    description: Optional[str] = None
    description_am: Optional[str] = None
    discount_type: str
    discount_value: float
    min_order_amount: float
    max_discount: Optional[float] = None
    max_uses: Optional[int] = None
    max_uses_per_user: int
    used_count: int
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    is_active: bool
    status: str


# --- Orders ---
class PricingRequest(BaseModel):
    user_id: int
    lat: float
    lng: float
    subtotal: Decimal = Field(..., ge=0)
    promo_code: Optional[str] = None


class PricedOrderResponse(BaseModel):
    zone_id: int
    zone_name: str
    distance_km: float
    subtotal: float
    delivery_fee: float
    discount_amount: float
    total: float
    eta_range: List[int]
    promo_id: Optional[int] = None
    promo_code: Optional[str] = None


class PlacedOrderResponse(PricedOrderResponse):
    order_id: int
    status: str
