"""
Order pricing: zone resolution, then promo evaluation, then the final breakdown.

price() is a dry run. place() hands the priced order to the order store and
only redeems promo usage once the store has committed the order.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple, Dict, Any, Protocol

from backend.app.core.constants import ZERO
from backend.app.core.exceptions import ServiceError
from backend.app.core.geo import GeoPoint
from backend.app.core.logging import get_logger
from backend.app.core.metrics import orders_priced_total
from backend.app.core.money import money_to_float, to_money
from backend.app.core.upstream import call_upstream
from backend.app.models.promo import normalize_code
from backend.app.services.delivery_zones import ZoneRegistry
from backend.app.services.promos import PromoEvaluator

logger = get_logger(__name__)

# Cancel reason when redemption fails for a reason other than promo eligibility
REDEMPTION_FAILED = "redemption_failed"


class PricingServiceError(ServiceError):
    """Base exception for order pricing errors."""
    code = "pricing_error"


class InvalidOrderDraft(PricingServiceError):
    code = "invalid_order_draft"

    def __init__(self, message: str):
        super().__init__(message, 400)


class BelowMinimumOrder(PricingServiceError):
    code = "below_minimum_order"

    def __init__(self, subtotal: Decimal, min_order_amount: Decimal):
        self.subtotal = subtotal
        self.min_order_amount = min_order_amount
        super().__init__(
            f"Minimum order for this delivery zone is {min_order_amount}, subtotal is {subtotal}", 422
        )


@dataclass(frozen=True)
class OrderPricingDraft:
    dropoff_point: GeoPoint
    subtotal: Decimal
    user_id: int
    promo_code: Optional[str] = None

    def __post_init__(self):
        try:
            subtotal = to_money(self.subtotal)
        except ValueError:
            raise InvalidOrderDraft(f"subtotal must be a number, got {self.subtotal!r}")
        if subtotal < ZERO:
            raise InvalidOrderDraft("subtotal must be >= 0")
        object.__setattr__(self, "subtotal", subtotal)
        code = normalize_code(self.promo_code) if self.promo_code else ""
        object.__setattr__(self, "promo_code", code or None)


@dataclass(frozen=True)
class PricedOrder:
    zone_id: int
    zone_name: str
    distance_km: float
    subtotal: Decimal
    delivery_fee: Decimal
    discount_amount: Decimal
    total: Decimal
    eta_range: Tuple[int, int]
    promo_id: Optional[int] = None
    promo_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "zone_id": self.zone_id,
            "zone_name": self.zone_name,
            "distance_km": round(self.distance_km, 3),
            "subtotal": money_to_float(self.subtotal),
            "delivery_fee": money_to_float(self.delivery_fee),
            "discount_amount": money_to_float(self.discount_amount),
            "total": money_to_float(self.total),
            "eta_range": list(self.eta_range),
            "promo_id": self.promo_id,
            "promo_code": self.promo_code,
        }


class OrderStore(Protocol):
    async def create_order(self, draft: OrderPricingDraft, priced: PricedOrder) -> int: ...

    async def cancel_order(self, order_id: int, reason: str) -> None: ...


@dataclass
class OrderEligibilityCoordinator:
    zones: ZoneRegistry
    promos: PromoEvaluator

    async def price(self, draft: OrderPricingDraft, now: Optional[datetime] = None) -> PricedOrder:
        """
        Price a draft without side effects.

        Raises:
            InvalidCoordinates, OutsideServiceArea: from zone resolution
            BelowMinimumOrder: subtotal under the zone minimum
            PromoServiceError: any promo rejection, unchanged
        """
        try:
            resolution = await self.zones.resolve(draft.dropoff_point)
            if draft.subtotal < resolution.min_order_amount:
                raise BelowMinimumOrder(draft.subtotal, resolution.min_order_amount)

            discount, promo_id, promo_code = ZERO, None, None
            if draft.promo_code:
                application = await self.promos.evaluate(draft.promo_code, draft.subtotal, draft.user_id, now)
                discount = application.discount_amount
                promo_id, promo_code = application.promo_id, application.code
        except ServiceError as e:
            orders_priced_total.labels(outcome=e.code).inc()
            raise

        fee = resolution.delivery_fee
        total = max(draft.subtotal - discount + fee, fee)
        orders_priced_total.labels(outcome="priced").inc()
        return PricedOrder(
            zone_id=resolution.zone.id,
            zone_name=resolution.zone.name,
            distance_km=resolution.distance_km,
            subtotal=draft.subtotal,
            delivery_fee=fee,
            discount_amount=discount,
            total=total,
            eta_range=resolution.eta_range,
            promo_id=promo_id,
            promo_code=promo_code,
        )

    async def place(
        self,
        draft: OrderPricingDraft,
        orders: OrderStore,
        now: Optional[datetime] = None,
    ) -> Tuple[int, PricedOrder]:
        """
        Price the draft, persist it, then redeem its promo.

        If redemption fails after the order was persisted, the order is
        cancelled (reason: the promo error code, or REDEMPTION_FAILED for
        unexpected errors) and the error propagates.
        """
        priced = await self.price(draft, now)
        order_id = await call_upstream("orders.create_order", lambda: orders.create_order(draft, priced))

        if priced.promo_code:
            try:
                await self.promos.redeem(
                    priced.promo_code,
                    draft.user_id,
                    order_id=order_id,
                    subtotal=draft.subtotal,
                    now=now,
                )
            except Exception as e:
                reason = e.code if isinstance(e, ServiceError) else REDEMPTION_FAILED
                log = logger.warning if isinstance(e, ServiceError) else logger.error
                log(
                    "Promo redemption failed after order was persisted",
                    order_id=order_id,
                    code=priced.promo_code,
                    reason=reason,
                    error=str(e),
                )
                await call_upstream("orders.cancel_order", lambda: orders.cancel_order(order_id, reason))
                raise

        logger.info(
            "Order placed",
            order_id=order_id,
            zone_id=priced.zone_id,
            total=float(priced.total),
            promo_code=priced.promo_code,
        )
        return order_id, priced
