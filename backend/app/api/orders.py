from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import get_coordinator, get_session, handle_service_error
from backend.app.core.constants import ORDER_STATUS_PENDING
from backend.app.core.exceptions import ServiceError, UpstreamUnavailable
from backend.app.core.geo import GeoPoint
from backend.app.core.logging import get_logger
from backend.app.schemas import PricingRequest, PricedOrderResponse, PlacedOrderResponse
from backend.app.services.orders import SqlOrderStore
from backend.app.services.pricing import OrderEligibilityCoordinator, OrderPricingDraft

router = APIRouter()
logger = get_logger(__name__)


def _draft(data: PricingRequest) -> OrderPricingDraft:
    return OrderPricingDraft(
        dropoff_point=GeoPoint(data.lat, data.lng),
        subtotal=data.subtotal,
        user_id=data.user_id,
        promo_code=data.promo_code,
    )


def _log_rejection(message: str, data: PricingRequest, e: ServiceError) -> None:
    # Eligibility rejections are expected outcomes, upstream failures are faults
    log = logger.error if isinstance(e, UpstreamUnavailable) else logger.warning
    log(message, user_id=data.user_id, promo_code=data.promo_code, error=e.message, error_code=e.code)


# --- Quote: dry run, nothing is written ---
@router.post("/quote", response_model=PricedOrderResponse)
async def quote_order(
    data: PricingRequest,
    session: AsyncSession = Depends(get_session),
    coordinator: OrderEligibilityCoordinator = Depends(get_coordinator),
):
    try:
        priced = await coordinator.price(_draft(data))
    except ServiceError as e:
        await session.rollback()
        _log_rejection("Order quote rejected", data, e)
        handle_service_error(e)
    return priced.to_dict()


# --- Place: persist the order, then redeem the promo ---
@router.post("", response_model=PlacedOrderResponse, status_code=201)
async def place_order(
    data: PricingRequest,
    session: AsyncSession = Depends(get_session),
    coordinator: OrderEligibilityCoordinator = Depends(get_coordinator),
):
    logger.info("Placing order", user_id=data.user_id, subtotal=float(data.subtotal), promo_code=data.promo_code)
    try:
        order_id, priced = await coordinator.place(_draft(data), SqlOrderStore(session))
    except ServiceError as e:
        await session.rollback()
        _log_rejection("Order placement rejected", data, e)
        handle_service_error(e)
    return {**priced.to_dict(), "order_id": order_id, "status": ORDER_STATUS_PENDING}
