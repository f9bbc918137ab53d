"""
Environment-driven configuration (pydantic-settings).

Everything is read once from the process environment or ``.env``; a
misconfigured production deploy fails at startup instead of on the first
admin request or the first order.
"""
import socket
from urllib.parse import quote_plus
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_ADMIN_SECRET_LENGTH = 16


def _resolve_db_host(host: str) -> str:
    """Resolve the DB host up front so asyncpg does not call getaddrinfo inside the event loop."""
    if not host or host in ("localhost", "127.0.0.1"):
        return host
    try:
        return socket.gethostbyname(host)
    except socket.gaierror:
        return host


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- PostgreSQL ---
    DB_USER: str = Field(..., description="PostgreSQL username")
    DB_PASSWORD: str = Field(..., description="PostgreSQL password")
    DB_NAME: str = Field(..., description="PostgreSQL database name")
    DB_HOST: str = Field(default="localhost", description="PostgreSQL host")
    DB_PORT: str = Field(default="5432", description="PostgreSQL port")
    DATABASE_URL: Optional[str] = Field(
        default=None, description="Full async SQLAlchemy URL, overrides the DB_* parts"
    )
    DB_POOL_SIZE: int = Field(default=20, ge=1, description="Connection pool size")
    DB_MAX_OVERFLOW: int = Field(default=40, ge=0, description="Connections allowed above the pool size")
    DB_POOL_RECYCLE: int = Field(default=3600, description="Recycle connections after this many seconds")

    # --- Redis (active zone snapshot) ---
    REDIS_HOST: str = Field(default="localhost", description="Redis host")
    REDIS_PORT: int = Field(default=6379, description="Redis port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_URL: Optional[str] = Field(default=None, description="Full Redis URL, overrides the REDIS_* parts")
    ZONES_CACHE_TTL: int = Field(default=60, ge=1, description="TTL of the cached active zone list (seconds)")

    # --- Admin API ---
    ADMIN_SECRET: Optional[str] = Field(default=None, description="Value expected in the X-Admin-Token header")
    ALLOWED_ORIGINS: str = Field(default="", description="Comma-separated CORS origins of the admin panel")

    # --- Store calls ---
    UPSTREAM_TIMEOUT_SECONDS: float = Field(default=3.0, gt=0, description="Timeout for a single store call")
    UPSTREAM_READ_RETRIES: int = Field(default=1, ge=0, description="Extra attempts for idempotent store reads")

    # --- Runtime ---
    ENVIRONMENT: str = Field(default="production", description="development or production")
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: Optional[str] = Field(default=None, description="json or console; defaults by environment")
    CURRENCY: str = Field(default="ETB", description="Currency of every amount (display only)")

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("development", "production"):
            raise ValueError("ENVIRONMENT must be 'development' or 'production'")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if v not in ("json", "console"):
            raise ValueError("LOG_FORMAT must be 'json' or 'console'")
        return v

    def production_errors(self) -> list[str]:
        """Settings that are optional locally but must be present in production."""
        if not self.is_production:
            return []
        errors = []
        if not self.ADMIN_SECRET:
            errors.append("ADMIN_SECRET is required in production")
        elif len(self.ADMIN_SECRET) < MIN_ADMIN_SECRET_LENGTH:
            errors.append(f"ADMIN_SECRET must be at least {MIN_ADMIN_SECRET_LENGTH} characters")
        if not self.allowed_origins_list:
            errors.append("ALLOWED_ORIGINS is required in production")
        return errors

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def log_json(self) -> bool:
        if self.LOG_FORMAT is None:
            return self.is_production
        return self.LOG_FORMAT == "json"

    @property
    def db_url(self) -> str:
        """Async URL used by the application (asyncpg)."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        host = _resolve_db_host(self.DB_HOST)
        password = quote_plus(self.DB_PASSWORD)
        return f"postgresql+asyncpg://{self.DB_USER}:{password}@{host}:{self.DB_PORT}/{self.DB_NAME}"

    @property
    def sync_db_url(self) -> str:
        """Blocking URL used by Alembic (psycopg2)."""
        return self.db_url.replace("+asyncpg", "+psycopg2", 1)

    @property
    def redis_url(self) -> str:
        if self.REDIS_URL:
            return self.REDIS_URL
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @property
    def allowed_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def cors_origins(self) -> list[str]:
        """Configured origins; any origin is allowed in development when none are set."""
        origins = self.allowed_origins_list
        if not origins and not self.is_production:
            return ["*"]
        return origins


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Load settings once per process. Raises ValueError listing every problem found."""
    global _settings
    if _settings is None:
        settings = Settings()
        errors = settings.production_errors()
        if errors:
            raise ValueError("Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors))
        _settings = settings
    return _settings
