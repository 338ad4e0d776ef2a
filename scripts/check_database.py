#!/usr/bin/env python3
"""
scripts/check_database.py
Check database connection, economy tables and the exchange reserve
"""

import sys
import asyncio
from pathlib import Path

# Add parent directory to path
sys.path.append(str(Path(__file__).parent.parent))

from magnum.database.database_service import DatabaseService, TABLES
from magnum.utils.config import Config
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def check_database():
    """Check database connection and status"""
    config = Config()

    print("Magnum Stars - Database Health Check")
    print("=" * 50)
    print(f"Host: {config.db_host}")
    print(f"Port: {config.db_port}")
    print(f"Database: {config.db_name}")
    print(f"User: {config.db_user}")
    print()

    database = DatabaseService(config)
    try:
        pool = await database.initialize()
        print("✅ Database service initialized successfully")

        if not await database.health_check():
            print("❌ Health query failed")
            return False

        async with pool.acquire() as conn:
            version = await conn.fetchval('SELECT version()')
            print(f"✅ PostgreSQL Version: {version.split(',')[0]}")

            tables = await conn.fetch("""
                SELECT table_name
                FROM information_schema.tables
                WHERE table_schema = 'public'
                ORDER BY table_name
            """)
            print(f"✅ Tables found: {len(tables)}")
            for table in tables:
                print(f"   - {table['table_name']}")

            try:
                alembic_version = await conn.fetchval(
                    "SELECT version_num FROM alembic_version LIMIT 1"
                )
                print(f"✅ Alembic version: {alembic_version}")
            except Exception:
                print("⚠️ No Alembic version table found (migrations not run)")

        stats = await database.get_stats()
        for table in TABLES:
            print(f"✅ {table}: {stats.get(f'{table}_rows', 'N/A')} rows")

        reserve = await database.reserves.get_reserve()
        print()
        print("Exchange reserve:")
        print(f"   magnumCoins: {reserve.magnum_coins:.4f}")
        print(f"   stars: {reserve.stars:.4f}")
        print(f"   total exchanges: {reserve.total_exchanges}")
        if reserve.is_liquid:
            print(f"   1 magnumCoin = {reserve.magnum_to_stars:.6f} stars")
            print(f"   1 star = {reserve.stars_to_magnum:.6f} magnumCoins")
        else:
            print("⚠️ Reserve is empty on one side - exchanges are unavailable")

        print("\n✅ Database health check passed!")
        return True

    except Exception as e:
        print(f"❌ Database health check failed: {e}")
        return False
    finally:
        await database.close()


async def main():
    """Main function"""
    success = await check_database()
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
