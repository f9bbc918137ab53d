"""
Admin endpoints for managing delivery zones (circular geofences per sub-city).

The active-zone snapshot is dropped again after every commit: a lookup that
ran between the service flush and the commit may have re-cached the old rows.
"""
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api.deps import (
    get_session,
    get_zone_registry,
    handle_service_error,
    require_admin_token,
)
from backend.app.core.exceptions import ServiceError
from backend.app.core.logging import get_logger
from backend.app.schemas import (
    ZoneCreate,
    ZoneUpdate,
    ZoneFeeUpdate,
    ZoneResponse,
    ZoneSummaryResponse,
)
from backend.app.services.delivery_zones import ZoneRegistry

router = APIRouter(dependencies=[Depends(require_admin_token)])
logger = get_logger(__name__)


@router.get("/zones", response_model=List[ZoneResponse])
async def list_zones(registry: ZoneRegistry = Depends(get_zone_registry)):
    try:
        zones = await registry.list_zones()
    except ServiceError as e:
        logger.error("Listing zones failed", error=e.message)
        handle_service_error(e)
    return [registry.zone_to_dict(z) for z in zones]


@router.get("/zones/summary", response_model=ZoneSummaryResponse)
async def zones_summary(registry: ZoneRegistry = Depends(get_zone_registry)):
    """Counters for the admin dashboard header."""
    try:
        return await registry.summary()
    except ServiceError as e:
        handle_service_error(e)


@router.get("/zones/uncovered", response_model=List[str])
async def uncovered_sub_cities(registry: ZoneRegistry = Depends(get_zone_registry)):
    """Sub-cities without a zone; orders from there are rejected."""
    try:
        return await registry.uncovered_sub_cities()
    except ServiceError as e:
        handle_service_error(e)


@router.get("/zones/presets")
async def zone_presets():
    return ZoneRegistry.presets()


@router.post("/zones", response_model=ZoneResponse, status_code=201)
async def create_zone(
    data: ZoneCreate,
    session: AsyncSession = Depends(get_session),
    registry: ZoneRegistry = Depends(get_zone_registry),
):
    try:
        zone = await registry.upsert_zone(data.model_dump(exclude_unset=True))
        await session.commit()
        await registry.invalidate_cache()
    except ServiceError as e:
        await session.rollback()
        logger.warning("Zone creation failed", sub_city=data.sub_city, error=e.message, error_code=e.code)
        handle_service_error(e)
    return registry.zone_to_dict(zone)


@router.put("/zones/{zone_id}", response_model=ZoneResponse)
async def update_zone(
    zone_id: int,
    data: ZoneUpdate,
    session: AsyncSession = Depends(get_session),
    registry: ZoneRegistry = Depends(get_zone_registry),
):
    try:
        zone = await registry.upsert_zone(data.model_dump(exclude_unset=True), zone_id=zone_id)
        await session.commit()
        await registry.invalidate_cache()
    except ServiceError as e:
        await session.rollback()
        logger.warning("Zone update failed", zone_id=zone_id, error=e.message, error_code=e.code)
        handle_service_error(e)
    return registry.zone_to_dict(zone)


@router.patch("/zones/{zone_id}/fee", response_model=ZoneResponse)
async def set_zone_fee(
    zone_id: int,
    data: ZoneFeeUpdate,
    session: AsyncSession = Depends(get_session),
    registry: ZoneRegistry = Depends(get_zone_registry),
):
    try:
        zone = await registry.set_fee(zone_id, data.delivery_fee, data.min_order_amount)
        await session.commit()
        await registry.invalidate_cache()
    except ServiceError as e:
        await session.rollback()
        logger.warning("Zone fee update failed", zone_id=zone_id, error=e.message, error_code=e.code)
        handle_service_error(e)
    return registry.zone_to_dict(zone)


@router.patch("/zones/{zone_id}/toggle", response_model=ZoneResponse)
async def toggle_zone(
    zone_id: int,
    session: AsyncSession = Depends(get_session),
    registry: ZoneRegistry = Depends(get_zone_registry),
):
    try:
        zone = await registry.toggle_active(zone_id)
        await session.commit()
        await registry.invalidate_cache()
    except ServiceError as e:
        await session.rollback()
        logger.warning("Zone toggle failed", zone_id=zone_id, error=e.message, error_code=e.code)
        handle_service_error(e)
    return registry.zone_to_dict(zone)


@router.delete("/zones/{zone_id}")
async def delete_zone(
    zone_id: int,
    session: AsyncSession = Depends(get_session),
    registry: ZoneRegistry = Depends(get_zone_registry),
):
    try:
        await registry.delete(zone_id)
        await session.commit()
        await registry.invalidate_cache()
    except ServiceError as e:
        await session.rollback()
        logger.warning("Zone deletion failed", zone_id=zone_id, error=e.message, error_code=e.code)
        handle_service_error(e)
    return {"status": "ok", "deleted": zone_id}
