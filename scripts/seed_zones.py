#!/usr/bin/env python3
"""
Seed one delivery zone per known sub-city from the built-in presets.

Zones that already exist are left untouched, so the script can be re-run
after adding presets.

Usage:
  python scripts/seed_zones.py
  python scripts/seed_zones.py --fee 40 --min-order 150 --inactive
  python scripts/seed_zones.py --reset      # drop and recreate the tables first
"""
import argparse
import asyncio
import sys
from decimal import Decimal
from pathlib import Path

# Project root on PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from backend.app.core.base import Base
from backend.app.core.database import async_session, engine
from backend.app.core.exceptions import ServiceError
from backend.app.models import delivery_zone, promo, order  # noqa: F401
from backend.app.services.cache import CacheService
from backend.app.services.delivery_zones import ZoneRegistry


async def reset_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    print("Tables dropped and recreated")


async def seed(fee: Decimal, min_order: Decimal, active: bool) -> int:
    created = 0
    async with async_session() as session:
        # Running API instances must stop serving the cached zone list
        registry = ZoneRegistry(session, cache=CacheService(await CacheService.get_redis()))
        for sub_city in await registry.uncovered_sub_cities():
            try:
                await registry.upsert_zone({
                    "sub_city": sub_city,
                    "use_preset": True,
                    "delivery_fee": fee,
                    "min_order_amount": min_order,
                    "is_active": active,
                })
            except ServiceError as e:
                await session.rollback()
                print(f"Skipped {sub_city}: {e.message}")
                continue
            await session.commit()
            await registry.invalidate_cache()
            created += 1
            print(f"Created zone {sub_city}")
    return created


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed delivery zones from sub-city presets")
    parser.add_argument("--fee", type=Decimal, default=Decimal("30"), help="Delivery fee for new zones")
    parser.add_argument("--min-order", type=Decimal, default=Decimal("100"), help="Minimum order amount")
    parser.add_argument("--inactive", action="store_true", help="Create zones deactivated")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate all tables first")
    args = parser.parse_args()

    async def run():
        if args.reset:
            await reset_tables()
        created = await seed(args.fee, args.min_order, not args.inactive)
        print(f"Done: {created} zone(s) created")
        await engine.dispose()
        await CacheService.close()

    asyncio.run(run())


if __name__ == "__main__":
    main()
