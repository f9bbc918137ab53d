import sys
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.api import admin_zones, admin_promos, orders, zones
from backend.app.api.deps import get_session, get_cache
from backend.app.services.cache import CacheService
from backend.app.core.logging import setup_logging, get_logger, bind_request_context, clear_request_context
from backend.app.core.settings import get_settings
from backend.app.core.metrics import PrometheusMiddleware, get_metrics_response

APP_VERSION = "1.0.0"

try:
    settings = get_settings()
except ValueError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    sys.exit(1)

setup_logging(log_level=settings.LOG_LEVEL, json_format=settings.log_json)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Delivery backend starting",
        version=APP_VERSION,
        environment=settings.ENVIRONMENT,
        currency=settings.CURRENCY,
        cors_origins=settings.cors_origins,
    )
    yield
    await CacheService.close()
    logger.info("Delivery backend stopped")


app = FastAPI(title="Delivery Admin Backend", version=APP_VERSION, lifespan=lifespan)

if settings.cors_origins == ["*"]:
    logger.warning("CORS allows every origin (development, ALLOWED_ORIGINS unset)")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)
# Added after CORS so it runs first on the way in
app.add_middleware(PrometheusMiddleware)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Tag every log line of a request with its id and echo the id back."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    clear_request_context()
    bind_request_context(request_id=request_id, path=request.url.path)
    try:
        response = await call_next(request)
    finally:
        clear_request_context()
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(zones.router, prefix="/zones", tags=["zones"])
app.include_router(orders.router, prefix="/orders", tags=["orders"])
# X-Admin-Token is checked on every route of the admin routers
app.include_router(admin_zones.router, prefix="/admin", tags=["admin"])
app.include_router(admin_promos.router, prefix="/admin", tags=["admin"])


@app.get("/")
async def root():
    return {"status": "ok"}


@app.get("/health")
async def health_check(
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
):
    """Readiness check: 200 when PostgreSQL and Redis answer, 503 otherwise."""
    checks = {"database": "ok", "redis": "ok"}

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Database health check failed", error=str(e))
        checks["database"] = f"error: {e}"

    try:
        await cache.ping()
    except RedisError as e:
        logger.error("Redis health check failed", error=str(e))
        checks["redis"] = f"error: {e}"

    healthy = all(value == "ok" for value in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "healthy" if healthy else "unhealthy", "version": APP_VERSION, "checks": checks},
    )


@app.get("/metrics")
async def metrics_endpoint(openmetrics: bool = False):
    return get_metrics_response(openmetrics=openmetrics)
