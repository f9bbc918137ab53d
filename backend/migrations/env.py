"""
Alembic environment for the delivery schema.

The application talks to PostgreSQL through asyncpg; migrations run on a
blocking psycopg2 engine built from the same settings (DATABASE_URL or
the DB_* variables).
"""
import sys
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import create_engine, pool
from sqlalchemy.engine import Connection

from alembic import context

# Project root on sys.path so that ``backend.app`` imports resolve
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from backend.app.core.base import Base  # noqa: E402
from backend.app.core.settings import get_settings  # noqa: E402

# Registers delivery_zones, promo_* and orders on Base.metadata
from backend.app.models import delivery_zone, promo, order  # noqa: E402,F401

config = context.config
sync_db_url = get_settings().sync_db_url

# ConfigParser treats % as interpolation
config.set_main_option("sqlalchemy.url", sync_db_url.replace("%", "%%"))

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit the SQL script without connecting (``alembic upgrade head --sql``)."""
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(sync_db_url, poolclass=pool.NullPool)
    try:
        with connectable.connect() as connection:
            do_run_migrations(connection)
    finally:
        connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
