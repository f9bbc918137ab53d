"""
Test fixtures for the delivery backend tests.

Provides:
- In-memory SQLite database for isolated testing
- Async test client with proper session management
- Test data factories for zones and promo codes
"""
# Settings are read on first import of the app, so the environment is prepared first
import os

os.environ.setdefault("ADMIN_SECRET", "test_admin_secret")
# Required by Settings; every test runs against SQLite instead
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("DB_NAME", "test")
# Development: no ALLOWED_ORIGINS or ADMIN_SECRET length checks
os.environ.setdefault("ENVIRONMENT", "development")

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

from backend.app.core.base import Base
from backend.app.main import app
from backend.app.api.deps import get_session, get_cache
from backend.app.services.cache import CacheService
from backend.app.models.delivery_zone import DeliveryZone
from backend.app.models.promo import PromoCode
from backend.app.models.order import Order  # noqa: F401 - register orders with Base.metadata

ADMIN_HEADERS = {"X-Admin-Token": "test_admin_secret"}

# Bole preset, used by most scenarios
BOLE_CENTER = (8.9806, 38.7578)


# One shared in-memory database; StaticPool keeps the single connection alive
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)

TestSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class MockCacheService:
    """Mock Redis cache for testing without actual Redis."""

    def __init__(self):
        self._cache = {}

    async def get(self, key: str):
        return self._cache.get(key)

    async def set(self, key: str, value, ttl: int = 300):
        self._cache[key] = value

    async def delete(self, key: str):
        self._cache.pop(key, None)

    async def ping(self):
        return True

    async def get_active_zones(self):
        return self._cache.get(CacheService.KEY_ACTIVE_ZONES)

    async def set_active_zones(self, zones):
        self._cache[CacheService.KEY_ACTIVE_ZONES] = zones

    async def invalidate_zones(self):
        self._cache.pop(CacheService.KEY_ACTIVE_ZONES, None)


@pytest.fixture(scope="function")
async def test_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test.
    Creates all tables before and drops after each test.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def file_sessionmaker(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """File-backed SQLite so that two sessions use two real connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'delivery.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def mock_cache() -> MockCacheService:
    """Provide mock cache service for testing."""
    return MockCacheService()


@pytest.fixture
async def client(
    test_session: AsyncSession,
    mock_cache: MockCacheService,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for testing API endpoints.
    Overrides database and cache dependencies.

    Each API request gets its own session so that it does not share
    a transaction with the test_session used for fixtures.
    """
    async def override_get_session():
        async with TestSessionLocal() as session:
            yield session

    async def override_get_cache():
        yield mock_cache

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_cache] = override_get_cache

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# --- Test Data Factories ---

def make_zone(**overrides) -> DeliveryZone:
    values = dict(
        name="Bole",
        sub_city="Bole",
        center_lat=BOLE_CENTER[0],
        center_lng=BOLE_CENTER[1],
        radius_km=4.0,
        delivery_fee=Decimal("30"),
        min_order_amount=Decimal("100"),
        estimated_min_minutes=20,
        estimated_max_minutes=35,
        is_active=True,
    )
    values.update(overrides)
    return DeliveryZone(**values)


def make_promo(**overrides) -> PromoCode:
    values = dict(
        code="WELCOME20",
        title="Welcome discount",
        discount_type="PERCENTAGE",
        discount_value=Decimal("20"),
        min_order_amount=Decimal("0"),
        max_discount=Decimal("50"),
        max_uses=None,
        max_uses_per_user=1,
        used_count=0,
        start_date=datetime.now(timezone.utc) - timedelta(days=1),
        end_date=None,
        is_active=True,
    )
    values.update(overrides)
    return PromoCode(**values)


@pytest.fixture
async def bole_zone(test_session: AsyncSession) -> DeliveryZone:
    """Active geofenced Bole zone: radius 4 km, fee 30, min order 100."""
    zone = make_zone()
    test_session.add(zone)
    await test_session.commit()
    await test_session.refresh(zone)
    return zone


@pytest.fixture
async def welcome_promo(test_session: AsyncSession) -> PromoCode:
    """WELCOME20: 20% off, capped at 50, once per user."""
    promo = make_promo()
    test_session.add(promo)
    await test_session.commit()
    await test_session.refresh(promo)
    return promo
