#!/usr/bin/env python3
"""
scripts/import_dump.py
Import a MongoDB export (mongoexport JSON of users / reserve) to PostgreSQL
"""

import sys
import asyncio
from pathlib import Path

# Add parent directory to path
sys.path.append(str(Path(__file__).parent.parent))

from magnum.database.database_service import DatabaseService
from magnum.database.data_migration_service import DataMigrationService
from magnum.utils.config import Config
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def import_export_files(users_path: str, reserve_path: str = None, force: bool = False):
    """Import exported collections to PostgreSQL"""
    config = Config()
    users_file = Path(users_path)
    reserve_file = Path(reserve_path) if reserve_path else None

    print("Magnum Stars - Data Import Tool")
    print("=" * 50)
    print(f"Users export: {users_file}")
    print(f"Reserve export: {reserve_file or 'N/A'}")
    print(f"Target database: {config.db_name}")
    print()

    if not users_file.exists():
        print(f"❌ Users export not found: {users_file}")
        return False
    if reserve_file and not reserve_file.exists():
        print(f"❌ Reserve export not found: {reserve_file}")
        return False

    database = DatabaseService(config)
    try:
        pool = await database.initialize()
        print("✅ Database service initialized")

        migration_service = DataMigrationService(pool)

        status = await migration_service.get_migration_status()
        print(f"Migration status: {status['status']}")

        if status['status'] == 'completed' and not force:
            print("⚠️ Data migration already completed!")
            print("Use --force to override and re-import")

            if status['migrations']:
                print("\nExisting migrations:")
                for migration in status['migrations']:
                    print(f"  - {migration['type']}: {migration['completed_at']}")
                    if migration['notes']:
                        print(f"    Notes: {migration['notes']}")

            return True

        if force and status['status'] == 'completed':
            print("🔄 Force mode: Re-importing data...")

        print(f"📥 Starting data import from {users_file.name}...")
        result = await migration_service.import_mongo_export(users_file, reserve_file, force=force)

        print(f"✅ Imported {result['users']} users")
        if result['reserve']:
            print("✅ Reserve imported")

        final_status = await migration_service.get_migration_status()
        if final_status.get('migrations'):
            latest = final_status['migrations'][0]
            print(f"Import completed at: {latest['completed_at']}")

        return True

    except Exception as e:
        print(f"❌ Import failed: {e}")
        logger.error(f"Import error: {e}", exc_info=True)
        return False
    finally:
        await database.close()


async def check_migration_status():
    """Check current migration status"""
    print("Magnum Stars - Migration Status")
    print("=" * 50)

    database = DatabaseService(Config())
    try:
        pool = await database.initialize()
        print("✅ Database connected")

        migration_service = DataMigrationService(pool)
        status = await migration_service.get_migration_status()

        print(f"Overall Status: {status['status'].upper()}")
        print()

        if status.get('migrations'):
            print("Migration History:")
            print("-" * 30)
            for migration in status['migrations']:
                status_icon = "✅" if migration['completed'] else "❌"
                print(f"{status_icon} {migration['type']}")
                print(f"   Source: {migration['source_file'] or 'N/A'}")
                print(f"   Date: {migration['completed_at'] or 'N/A'}")
                if migration['notes']:
                    print(f"   Notes: {migration['notes']}")
                print()
        else:
            print("No migrations found")

        return True

    except Exception as e:
        print(f"❌ Status check failed: {e}")
        return False
    finally:
        await database.close()


def show_help():
    """Show help information"""
    print("Magnum Stars - Data Import Tool")
    print("=" * 50)
    print("Usage:")
    print("  python scripts/import_dump.py <users.json>                        - Import users")
    print("  python scripts/import_dump.py <users.json> --reserve <file.json>  - Import users and the reserve")
    print("  python scripts/import_dump.py <users.json> --force                - Force re-import")
    print("  python scripts/import_dump.py --status                            - Check status")
    print("  python scripts/import_dump.py --help                              - Show this help")
    print()
    print("Examples:")
    print("  mongoexport --db magnum --collection users --jsonArray --out users.json")
    print("  python scripts/import_dump.py users.json --reserve reserve.json")


async def main():
    """Main function"""
    args = sys.argv[1:]

    if not args or "--help" in args:
        show_help()
        return 0

    if "--status" in args:
        success = await check_migration_status()
        return 0 if success else 1

    reserve_file = None
    if "--reserve" in args:
        idx = args.index("--reserve") + 1
        if idx >= len(args):
            print("❌ Missing file for --reserve")
            return 1
        reserve_file = args[idx]

    users_file = args[0]
    force = "--force" in args

    success = await import_export_files(users_file, reserve_file, force)
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
