"""Delivery zone management and geofence matching service."""
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Dict, Any, Optional, Protocol, Tuple

from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import (
    DEFAULT_RADIUS_KM,
    MAX_RADIUS_KM,
    MIN_RADIUS_KM,
    SUB_CITIES,
    SUB_CITY_PRESETS,
    ONE_CENT,
    ZERO,
)
from backend.app.core.exceptions import ServiceError
from backend.app.core.geo import GeoPoint, haversine_km, is_valid_coordinate
from backend.app.core.logging import get_logger
from backend.app.core.metrics import zone_resolutions_total
from backend.app.core.money import money_to_float, to_money
from backend.app.core.upstream import call_upstream
from backend.app.models.delivery_zone import DeliveryZone
from backend.app.services.cache import CacheService

logger = get_logger(__name__)


class ZoneServiceError(ServiceError):
    """Base exception for delivery zone errors."""
    code = "zone_error"


class InvalidCoordinates(ZoneServiceError):
    code = "invalid_coordinates"

    def __init__(self, lat: Any, lng: Any):
        super().__init__(f"Invalid coordinates ({lat}, {lng})", 400)


class OutsideServiceArea(ZoneServiceError):
    code = "outside_service_area"

    def __init__(self, point: GeoPoint):
        self.point = point
        super().__init__("Delivery address is outside every active delivery zone", 422)


class InvalidZoneParameters(ZoneServiceError):
    code = "invalid_zone_parameters"

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("; ".join(problems), 400)


class DuplicateSubCity(ZoneServiceError):
    code = "duplicate_sub_city"

    def __init__(self, sub_city: str):
        super().__init__(f"Sub-city '{sub_city}' already has a delivery zone", 409)


class ZoneNotFound(ZoneServiceError):
    code = "zone_not_found"

    def __init__(self, zone_id: int):
        super().__init__(f"Delivery zone {zone_id} not found", 404)


class ZoneInUse(ZoneServiceError):
    code = "zone_in_use"

    def __init__(self, zone_id: int):
        super().__init__(f"Delivery zone {zone_id} is referenced by orders, deactivate it instead", 409)


@dataclass(frozen=True)
class ZoneSnapshot:
    """Immutable view of an active geofenced zone, as used for resolution and caching."""
    id: int
    name: str
    sub_city: str
    center_lat: float
    center_lng: float
    radius_km: float
    delivery_fee: Decimal
    min_order_amount: Decimal
    estimated_min_minutes: int
    estimated_max_minutes: int

    @property
    def center(self) -> GeoPoint:
        return GeoPoint(self.center_lat, self.center_lng)

    @classmethod
    def from_model(cls, zone: DeliveryZone) -> "ZoneSnapshot":
        return cls(
            id=zone.id,
            name=zone.name,
            sub_city=zone.sub_city,
            center_lat=float(zone.center_lat),
            center_lng=float(zone.center_lng),
            radius_km=float(zone.radius_km),
            delivery_fee=to_money(zone.delivery_fee or 0),
            min_order_amount=to_money(zone.min_order_amount or 0),
            estimated_min_minutes=zone.estimated_min_minutes,
            estimated_max_minutes=zone.estimated_max_minutes,
        )

    def to_cache(self) -> Dict[str, Any]:
        data = dict(self.__dict__)
        data["delivery_fee"] = str(self.delivery_fee)
        data["min_order_amount"] = str(self.min_order_amount)
        return data

    @classmethod
    def from_cache(cls, data: Dict[str, Any]) -> "ZoneSnapshot":
        return cls(**{
            **data,
            "delivery_fee": to_money(data["delivery_fee"]),
            "min_order_amount": to_money(data["min_order_amount"]),
        })


@dataclass(frozen=True)
class ZoneResolution:
    zone: ZoneSnapshot
    distance_km: float
    delivery_fee: Decimal
    min_order_amount: Decimal
    eta_range: Tuple[int, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zone_id": self.zone.id,
            "zone_name": self.zone.name,
            "sub_city": self.zone.sub_city,
            "distance_km": round(self.distance_km, 3),
            "delivery_fee": money_to_float(self.delivery_fee),
            "min_order_amount": money_to_float(self.min_order_amount),
            "eta_range": list(self.eta_range),
        }


class ZoneReferenceChecker(Protocol):
    async def is_zone_referenced(self, zone_id: int) -> bool: ...


class SqlZoneStore:
    """Zone persistence over an AsyncSession. Writes are flushed, the caller commits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_active_zones_with_geofence(self) -> List[DeliveryZone]:
        result = await self.session.execute(
            select(DeliveryZone)
            .where(
                DeliveryZone.is_active == True,  # noqa: E712
                DeliveryZone.center_lat.is_not(None),
                DeliveryZone.center_lng.is_not(None),
            )
            .order_by(DeliveryZone.id)
        )
        return list(result.scalars().all())

    async def list_zones(self) -> List[DeliveryZone]:
        result = await self.session.execute(select(DeliveryZone).order_by(DeliveryZone.id))
        return list(result.scalars().all())

    async def list_sub_cities(self) -> List[str]:
        result = await self.session.execute(select(DeliveryZone.sub_city))
        return list(result.scalars().all())

    async def get(self, zone_id: int) -> Optional[DeliveryZone]:
        return await self.session.get(DeliveryZone, zone_id)

    async def find_by_sub_city(self, sub_city: str) -> Optional[DeliveryZone]:
        result = await self.session.execute(
            select(DeliveryZone).where(DeliveryZone.sub_city == sub_city)
        )
        return result.scalar_one_or_none()

    async def add(self, zone: DeliveryZone) -> DeliveryZone:
        self.session.add(zone)
        await self.session.flush()
        return zone

    async def flush(self) -> None:
        await self.session.flush()

    async def delete(self, zone: DeliveryZone) -> None:
        await self.session.delete(zone)
        await self.session.flush()


# Fields an admin may set on create and edit; sub_city is create-only
EDITABLE_FIELDS = (
    "name",
    "name_am",
    "center_lat",
    "center_lng",
    "radius_km",
    "delivery_fee",
    "min_order_amount",
    "estimated_min_minutes",
    "estimated_max_minutes",
    "is_active",
)

ZONE_DEFAULTS: Dict[str, Any] = {
    "name": None,
    "name_am": None,
    "center_lat": None,
    "center_lng": None,
    "radius_km": DEFAULT_RADIUS_KM,
    "delivery_fee": Decimal("30"),
    "min_order_amount": Decimal("100"),
    "estimated_min_minutes": 15,
    "estimated_max_minutes": 30,
    "is_active": True,
}


class ZoneRegistry:
    """
    Owns the delivery zones and answers "is this point deliverable, and on what terms?".

    Admin mutations flush but do not commit; the API layer commits or rolls back
    and calls ``invalidate_cache()`` once the commit is visible.
    """

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        *,
        store: Optional[SqlZoneStore] = None,
        orders: Optional[ZoneReferenceChecker] = None,
        cache: Optional[CacheService] = None,
    ):
        if store is None or orders is None:
            if session is None:
                raise ValueError("ZoneRegistry needs a session or explicit stores")
            from backend.app.services.orders import SqlOrderStore
            store = store or SqlZoneStore(session)
            orders = orders or SqlOrderStore(session)
        self.store = store
        self.orders = orders
        self.cache = cache

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(self, point: GeoPoint) -> ZoneResolution:
        """
        Resolve a drop-off point to the nearest active zone whose geofence contains it.

        The boundary is inclusive (distance == radius matches). Overlaps go to the
        nearest center, equal distances to the lowest zone id.

        Raises:
            InvalidCoordinates: |lat| > 90 or |lng| > 180
            OutsideServiceArea: no active geofence contains the point
        """
        if not point.is_valid:
            zone_resolutions_total.labels(outcome="invalid_coordinates").inc()
            raise InvalidCoordinates(point.lat, point.lng)

        best: Optional[Tuple[float, ZoneSnapshot]] = None
        for zone in await self._active_snapshot():
            distance = haversine_km(point, zone.center)
            if distance > zone.radius_km:
                continue
            if best is None or (distance, zone.id) < (best[0], best[1].id):
                best = (distance, zone)

        if best is None:
            zone_resolutions_total.labels(outcome="outside_service_area").inc()
            logger.info("Dropoff outside service area", lat=point.lat, lng=point.lng)
            raise OutsideServiceArea(point)

        distance, zone = best
        zone_resolutions_total.labels(outcome="resolved").inc()
        return ZoneResolution(
            zone=zone,
            distance_km=distance,
            delivery_fee=zone.delivery_fee,
            min_order_amount=zone.min_order_amount,
            eta_range=(zone.estimated_min_minutes, zone.estimated_max_minutes),
        )

    async def _active_snapshot(self) -> List[ZoneSnapshot]:
        if self.cache is not None:
            try:
                cached = await self.cache.get_active_zones()
            except RedisError as e:
                logger.warning("Zone cache read failed, falling back to store", error=str(e))
                cached = None
            if cached is not None:
                return [ZoneSnapshot.from_cache(z) for z in cached]

        zones = await call_upstream(
            "zones.list_active_zones_with_geofence",
            self.store.list_active_zones_with_geofence,
            idempotent=True,
        )
        snapshot = [ZoneSnapshot.from_model(z) for z in zones if z.is_active and z.is_geofenced]

        if self.cache is not None:
            try:
                await self.cache.set_active_zones([z.to_cache() for z in snapshot])
            except RedisError as e:
                logger.warning("Zone cache write failed", error=str(e))
        return snapshot

    async def invalidate_cache(self) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.invalidate_zones()
        except RedisError as e:
            logger.warning("Zone cache invalidation failed", error=str(e))

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    async def list_zones(self) -> List[DeliveryZone]:
        return await call_upstream("zones.list_zones", self.store.list_zones, idempotent=True)

    async def get_zone(self, zone_id: int) -> DeliveryZone:
        zone = await call_upstream("zones.get", lambda: self.store.get(zone_id), idempotent=True)
        if zone is None:
            raise ZoneNotFound(zone_id)
        return zone

    async def upsert_zone(self, data: Dict[str, Any], zone_id: Optional[int] = None) -> DeliveryZone:
        """Create a zone when ``zone_id`` is None, otherwise edit it. ``sub_city`` is create-only."""
        if zone_id is None:
            return await self._create_zone(data)
        return await self._update_zone(zone_id, data)

    async def _create_zone(self, data: Dict[str, Any]) -> DeliveryZone:
        sub_city = (data.get("sub_city") or "").strip()
        values = dict(ZONE_DEFAULTS)
        values.update({k: data[k] for k in EDITABLE_FIELDS if k in data})

        preset = SUB_CITY_PRESETS.get(sub_city)
        if data.get("use_preset") and preset:
            if values["center_lat"] is None and values["center_lng"] is None:
                values["center_lat"] = preset["lat"]
                values["center_lng"] = preset["lng"]
            if data.get("radius_km") is None:
                values["radius_km"] = preset["radius"]
            values["name"] = values["name"] or sub_city
        if values["radius_km"] is None:
            values["radius_km"] = DEFAULT_RADIUS_KM

        values = self._validate(sub_city, values)

        existing = await call_upstream(
            "zones.find_by_sub_city", lambda: self.store.find_by_sub_city(sub_city), idempotent=True
        )
        if existing is not None:
            raise DuplicateSubCity(sub_city)

        zone = DeliveryZone(sub_city=sub_city, **values)
        try:
            await call_upstream("zones.add", lambda: self.store.add(zone))
        except IntegrityError as e:
            # Lost a concurrent create on the unique sub_city constraint
            raise DuplicateSubCity(sub_city) from e

        await self.invalidate_cache()
        logger.info("Delivery zone created", zone_id=zone.id, sub_city=sub_city, is_active=zone.is_active)
        return zone

    async def _update_zone(self, zone_id: int, data: Dict[str, Any]) -> DeliveryZone:
        zone = await self.get_zone(zone_id)
        if data.get("sub_city") is not None:
            # Raises ImmutableFieldError when the value differs
            zone.sub_city = data["sub_city"].strip()

        values = {field: getattr(zone, field) for field in EDITABLE_FIELDS}
        values.update({k: data[k] for k in EDITABLE_FIELDS if k in data})
        values = self._validate(zone.sub_city, values)

        for field, value in values.items():
            setattr(zone, field, value)
        await call_upstream("zones.flush", self.store.flush)
        await self.invalidate_cache()
        logger.info("Delivery zone updated", zone_id=zone.id, fields=sorted(k for k in data if k in EDITABLE_FIELDS))
        return zone

    async def set_fee(
        self,
        zone_id: int,
        delivery_fee: Any,
        min_order_amount: Optional[Any] = None,
    ) -> DeliveryZone:
        """Change the pricing terms of a zone without touching its geofence."""
        zone = await self.get_zone(zone_id)
        problems = []
        fee = to_money(delivery_fee)
        if fee < ZERO:
            problems.append("delivery_fee must be >= 0")
        min_order = to_money(min_order_amount) if min_order_amount is not None else None
        if min_order is not None and min_order < ZERO:
            problems.append("min_order_amount must be >= 0")
        if problems:
            raise InvalidZoneParameters(problems)

        zone.delivery_fee = fee
        if min_order is not None:
            zone.min_order_amount = min_order
        await call_upstream("zones.flush", self.store.flush)
        await self.invalidate_cache()
        logger.info("Delivery zone fee changed", zone_id=zone.id, delivery_fee=float(fee))
        return zone

    async def toggle_active(self, zone_id: int) -> DeliveryZone:
        zone = await self.get_zone(zone_id)
        zone.is_active = not zone.is_active
        await call_upstream("zones.flush", self.store.flush)
        await self.invalidate_cache()
        logger.info("Delivery zone toggled", zone_id=zone.id, is_active=zone.is_active)
        return zone

    async def delete(self, zone_id: int) -> None:
        """Hard-delete an unreferenced zone. Zones with orders must be deactivated instead."""
        zone = await self.get_zone(zone_id)
        referenced = await call_upstream(
            "orders.is_zone_referenced", lambda: self.orders.is_zone_referenced(zone_id), idempotent=True
        )
        if referenced:
            raise ZoneInUse(zone_id)
        await call_upstream("zones.delete", lambda: self.store.delete(zone))
        await self.invalidate_cache()
        logger.info("Delivery zone deleted", zone_id=zone_id)

    async def uncovered_sub_cities(self) -> List[str]:
        """Known sub-cities without any zone (active or not). Orders from there are rejected."""
        owned = set(await call_upstream("zones.list_sub_cities", self.store.list_sub_cities, idempotent=True))
        return [sc for sc in SUB_CITIES if sc not in owned]

    async def summary(self) -> Dict[str, Any]:
        zones = await self.list_zones()
        total_fee = sum((to_money(z.delivery_fee or 0) for z in zones), ZERO)
        average = (total_fee / len(zones)).quantize(ONE_CENT) if zones else ZERO
        return {
            "total": len(zones),
            "active": sum(1 for z in zones if z.is_active),
            "geofenced": sum(1 for z in zones if z.is_geofenced),
            "average_delivery_fee": float(average),
        }

    @staticmethod
    def presets() -> List[Dict[str, Any]]:
        return [
            {"sub_city": name, "center_lat": p["lat"], "center_lng": p["lng"], "radius_km": p["radius"]}
            for name, p in SUB_CITY_PRESETS.items()
        ]

    @staticmethod
    def _validate(sub_city: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Check the numeric constraints of a zone and return normalized values."""
        problems = []
        values = dict(values)

        if sub_city not in SUB_CITY_PRESETS:
            problems.append(f"unknown sub_city '{sub_city}'")
        values["name"] = (values.get("name") or "").strip()
        if not values["name"]:
            problems.append("name is required")
        values["name_am"] = (values.get("name_am") or "").strip() or None

        try:
            radius = float(values["radius_km"])
        except (TypeError, ValueError):
            radius = None
        if radius is None or not MIN_RADIUS_KM <= radius <= MAX_RADIUS_KM:
            problems.append(f"radius_km must be between {MIN_RADIUS_KM} and {MAX_RADIUS_KM}")
        else:
            values["radius_km"] = radius

        lat, lng = values.get("center_lat"), values.get("center_lng")
        if (lat is None) != (lng is None):
            problems.append("center_lat and center_lng must be set together")
        elif lat is not None and not is_valid_coordinate(lat, lng):
            problems.append("center coordinates are out of range")
        elif lat is not None:
            values["center_lat"], values["center_lng"] = float(lat), float(lng)

        for field in ("delivery_fee", "min_order_amount"):
            if values.get(field) is None:
                problems.append(f"{field} is required")
                continue
            try:
                amount = to_money(values[field])
            except ValueError:
                problems.append(f"{field} must be a number")
                continue
            if amount < ZERO:
                problems.append(f"{field} must be >= 0")
            values[field] = amount

        eta_min, eta_max = values.get("estimated_min_minutes"), values.get("estimated_max_minutes")
        if eta_min is None or eta_max is None or eta_min < 0 or eta_max < 0:
            problems.append("estimated minutes must be >= 0")
        elif eta_min > eta_max:
            problems.append("estimated_min_minutes must be <= estimated_max_minutes")

        if values.get("is_active") is None:
            problems.append("is_active is required")
        else:
            values["is_active"] = bool(values["is_active"])

        if problems:
            raise InvalidZoneParameters(problems)
        return values

    @staticmethod
    def zone_to_dict(zone: DeliveryZone) -> Dict[str, Any]:
        return {
            "id": zone.id,
            "name": zone.name,
            "name_am": zone.name_am,
            "sub_city": zone.sub_city,
            "center_lat": zone.center_lat,
            "center_lng": zone.center_lng,
            "radius_km": zone.radius_km,
            "delivery_fee": money_to_float(to_money(zone.delivery_fee or 0)),
            "min_order_amount": money_to_float(to_money(zone.min_order_amount or 0)),
            "estimated_min_minutes": zone.estimated_min_minutes,
            "estimated_max_minutes": zone.estimated_max_minutes,
            "is_active": zone.is_active,
            "is_geofenced": zone.is_geofenced,
        }
