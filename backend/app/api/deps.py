from typing import AsyncGenerator, Optional, NoReturn

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database import async_session
from backend.app.core.exceptions import ServiceError
from backend.app.core.settings import get_settings
from backend.app.services.cache import CacheService
from backend.app.services.delivery_zones import ZoneRegistry
from backend.app.services.promos import PromoEvaluator
from backend.app.services.pricing import OrderEligibilityCoordinator


# One database session per request
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


# Shared Redis-backed cache service
async def get_cache() -> AsyncGenerator[CacheService, None]:
    redis = await CacheService.get_redis()
    yield CacheService(redis)


async def require_admin_token(x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token")):
    admin_secret = get_settings().ADMIN_SECRET
    if not admin_secret:
        raise HTTPException(status_code=503, detail="Admin panel not configured (ADMIN_SECRET missing)")
    if not x_admin_token or x_admin_token != admin_secret:
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")


async def get_zone_registry(
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
) -> ZoneRegistry:
    return ZoneRegistry(session, cache=cache)


async def get_promo_evaluator(session: AsyncSession = Depends(get_session)) -> PromoEvaluator:
    return PromoEvaluator(session)


async def get_coordinator(
    zones: ZoneRegistry = Depends(get_zone_registry),
    promos: PromoEvaluator = Depends(get_promo_evaluator),
) -> OrderEligibilityCoordinator:
    return OrderEligibilityCoordinator(zones=zones, promos=promos)


def handle_service_error(e: ServiceError) -> NoReturn:
    """Convert service exceptions to HTTP exceptions with a stable error code."""
    raise HTTPException(status_code=e.status_code, detail=e.to_dict())
