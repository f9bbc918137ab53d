"""Admin endpoints for promo codes."""
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import (
    get_promo_evaluator,
    get_session,
    handle_service_error,
    require_admin_token,
)
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.schemas import PromoCreate, PromoUpdate, PromoResponse
from backend.app.services.promos import PromoEvaluator

router = APIRouter(dependencies=[Depends(require_admin_token)])
logger = get_logger(__name__)


@router.get("/promos", response_model=List[PromoResponse])
async def list_promos(promos: PromoEvaluator = Depends(get_promo_evaluator)):
    """All promo codes, newest first, with a computed status label."""
    try:
        return await promos.list_promos()
    except ServiceError as e:
        handle_service_error(e)


@router.post("/promos", response_model=PromoResponse, status_code=201)
async def create_promo(
    data: PromoCreate,
    session: AsyncSession = Depends(get_session),
    promos: PromoEvaluator = Depends(get_promo_evaluator),
):
    try:
        promo = await promos.create_promo(data.model_dump(exclude_unset=True))
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        logger.warning("Promo creation failed", code=data.code, error=e.message, error_code=e.code)
        handle_service_error(e)
    return promos.promo_to_dict(promo)


@router.put("/promos/{promo_id}", response_model=PromoResponse)
async def update_promo(
    promo_id: int,
    data: PromoUpdate,
    session: AsyncSession = Depends(get_session),
    promos: PromoEvaluator = Depends(get_promo_evaluator),
):
    try:
        promo = await promos.update_promo(promo_id, data.model_dump(exclude_unset=True))
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        logger.warning("Promo update failed", promo_id=promo_id, error=e.message, error_code=e.code)
        handle_service_error(e)
    return promos.promo_to_dict(promo)


@router.patch("/promos/{promo_id}/toggle", response_model=PromoResponse)
async def toggle_promo(
    promo_id: int,
    session: AsyncSession = Depends(get_session),
    promos: PromoEvaluator = Depends(get_promo_evaluator),
):
    try:
        promo = await promos.toggle_active(promo_id)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        logger.warning("Promo toggle failed", promo_id=promo_id, error=e.message, error_code=e.code)
        handle_service_error(e)
    return promos.promo_to_dict(promo)


@router.delete("/promos/{promo_id}")
async def delete_promo(
    promo_id: int,
    session: AsyncSession = Depends(get_session),
    promos: PromoEvaluator = Depends(get_promo_evaluator),
):
    try:
        await promos.delete_promo(promo_id)
        await session.commit()
    except ServiceError as e:
        await session.rollback()
        logger.warning("Promo deletion failed", promo_id=promo_id, error=e.message, error_code=e.code)
        handle_service_error(e)
    return {"status": "ok", "deleted": promo_id}
