"""Public zone lookup used by the checkout screen before pricing."""
from fastapi import APIRouter, Depends

from backend.app.api.deps import get_zone_registry, handle_service_error
from backend.app.core.exceptions import ServiceError
from backend.app.core.geo import GeoPoint
from backend.app.core.logging import get_logger
from backend.app.schemas import ResolveRequest, ZoneResolutionResponse
from backend.app.services.delivery_zones import ZoneRegistry

router = APIRouter()
logger = get_logger(__name__)


@router.post("/resolve", response_model=ZoneResolutionResponse)
async def resolve_zone(data: ResolveRequest, registry: ZoneRegistry = Depends(get_zone_registry)):
    try:
        resolution = await registry.resolve(GeoPoint(data.lat, data.lng))
    except ServiceError as e:
        logger.warning("Zone resolution rejected", lat=data.lat, lng=data.lng, error_code=e.code)
        handle_service_error(e)
    return resolution.to_dict()
