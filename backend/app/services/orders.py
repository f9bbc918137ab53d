# backend/app/services/orders.py
"""
Order persistence for priced drafts.

The pricing coordinator never writes orders itself: it hands a PricedOrder
to this store, which commits it durably before any promo usage is redeemed.
"""
from typing import Optional, Dict, Any, TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.constants import ORDER_STATUS_CANCELLED, ORDER_STATUS_PENDING
from backend.app.core.logging import get_logger
from backend.app.core.money import money_to_float, to_money
from backend.app.models.order import Order

if TYPE_CHECKING:
    from backend.app.services.pricing import OrderPricingDraft, PricedOrder

logger = get_logger(__name__)


class SqlOrderStore:
    """Order store over an AsyncSession. Unlike the zone/promo stores it commits: a created order is durable."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def is_zone_referenced(self, zone_id: int) -> bool:
        result = await self.session.execute(
            select(Order.id).where(Order.zone_id == zone_id).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def create_order(self, draft: "OrderPricingDraft", priced: "PricedOrder") -> int:
        order = Order(
            user_id=draft.user_id,
            zone_id=priced.zone_id,
            promo_id=priced.promo_id,
            promo_code=priced.promo_code,
            dropoff_lat=draft.dropoff_point.lat,
            dropoff_lng=draft.dropoff_point.lng,
            subtotal=priced.subtotal,
            delivery_fee=priced.delivery_fee,
            discount_amount=priced.discount_amount,
            total=priced.total,
            status=ORDER_STATUS_PENDING,
        )
        self.session.add(order)
        await self.session.commit()
        logger.info("Order persisted", order_id=order.id, zone_id=order.zone_id, user_id=order.user_id)
        return order.id

    async def cancel_order(self, order_id: int, reason: str) -> None:
        await self.session.execute(
            update(Order)
            .where(Order.id == order_id)
            .values(status=ORDER_STATUS_CANCELLED, cancel_reason=reason)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        logger.warning("Order cancelled", order_id=order_id, reason=reason)

    async def get_order(self, order_id: int) -> Optional[Order]:
        return await self.session.get(Order, order_id, populate_existing=True)

    @staticmethod
    def order_to_dict(order: Order) -> Dict[str, Any]:
        return {
            "id": order.id,
            "user_id": order.user_id,
            "zone_id": order.zone_id,
            "promo_id": order.promo_id,
            "promo_code": order.promo_code,
            "subtotal": money_to_float(to_money(order.subtotal)),
            "delivery_fee": money_to_float(to_money(order.delivery_fee)),
            "discount_amount": money_to_float(to_money(order.discount_amount or 0)),
            "total": money_to_float(to_money(order.total)),
            "status": order.status,
            "cancel_reason": order.cancel_reason,
        }
