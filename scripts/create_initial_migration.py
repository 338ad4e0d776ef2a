#!/usr/bin/env python3
"""
scripts/create_initial_migration.py
Create the Alembic revision for the economy tables, or apply pending ones
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.append(str(Path(__file__).parent.parent))

import asyncio

import asyncpg
from alembic import command
from alembic.config import Config as AlembicConfig

from magnum.utils.config import Config

ALEMBIC_INI = Path(__file__).parent.parent / "alembic.ini"


async def ensure_database_exists(config: Config):
    """Create the target database through the maintenance 'postgres' database if missing"""
    conn = await asyncpg.connect(
        host=config.db_host,
        port=config.db_port,
        user=config.db_user,
        password=config.db_password,
        database="postgres",
    )
    try:
        if await conn.fetchval("SELECT 1 FROM pg_database WHERE datname = $1", config.db_name):
            print(f"Database '{config.db_name}' already exists")
            return
        print(f"Creating database '{config.db_name}'...")
        await conn.execute(f'CREATE DATABASE "{config.db_name}"')
        print(f"Database '{config.db_name}' created")
    finally:
        await conn.close()


def load_alembic_config():
    if not ALEMBIC_INI.exists():
        print(f"Error: alembic.ini not found at {ALEMBIC_INI}")
        return None
    alembic_cfg = AlembicConfig(str(ALEMBIC_INI))
    versions_dir = ALEMBIC_INI.parent / alembic_cfg.get_main_option("script_location") / "versions"
    versions_dir.mkdir(parents=True, exist_ok=True)
    return alembic_cfg


def create_revision(message: str) -> bool:
    alembic_cfg = load_alembic_config()
    if alembic_cfg is None:
        return False
    try:
        print(f"Autogenerating revision: {message}")
        command.revision(alembic_cfg, message=message, autogenerate=True)
        print("Revision created - review it before applying")
        return True
    except Exception as e:
        print(f"Error creating migration: {e}")
        return False


def upgrade_database() -> bool:
    alembic_cfg = load_alembic_config()
    if alembic_cfg is None:
        return False
    try:
        print("Upgrading database to head...")
        command.upgrade(alembic_cfg, "head")
        print("Database upgraded successfully!")
        return True
    except Exception as e:
        print(f"Error upgrading database: {e}")
        return False


async def main():
    print("Magnum Stars - Database Migration Setup")
    print("=" * 50)

    try:
        await ensure_database_exists(Config())
    except Exception as e:
        print(f"Error ensuring database exists: {e}")
        return 1

    if not create_revision("Initial migration - economy tables"):
        return 1

    print("\nNext step:")
    print("  python scripts/create_initial_migration.py upgrade")
    return 0


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "upgrade":
        sys.exit(0 if upgrade_database() else 1)
    sys.exit(asyncio.run(main()))
