"""
magnum/database/data_migration_service.py
Data migration service for importing the legacy MongoDB collections
(``mongoexport`` JSON of ``users`` and ``reserve``)
"""

import asyncpg
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import Reserve, User
from .queries import ReserveQueries, UserQueries

logger = logging.getLogger(__name__)

MIGRATION_TYPE = "mongo_import"

# Persisted timestamps that are unix seconds in the user document
UNIX_FIELDS = ("created", "lastSeen")


def decode_extended_json(value: Any) -> Any:
    """Turn MongoDB extended JSON wrappers into plain Python values"""
    if isinstance(value, list):
        return [decode_extended_json(v) for v in value]
    if not isinstance(value, dict):
        return value

    if len(value) == 1:
        key, inner = next(iter(value.items()))
        if key in ("$numberLong", "$numberInt"):
            return int(inner)
        if key in ("$numberDouble", "$numberDecimal"):
            return float(inner)
        if key == "$oid":
            return str(inner)
        if key == "$date":
            return _parse_date(decode_extended_json(inner))

    return {k: decode_extended_json(v) for k, v in value.items()}


def _parse_date(value: Any) -> datetime:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, timezone.utc)
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _to_unix(value: Any) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp())
    return int(value or 0)


def load_export(path: Path) -> List[Dict[str, Any]]:
    """Read a mongoexport file: a JSON array (--jsonArray) or one document per line"""
    content = Path(path).read_text(encoding="utf-8").strip()
    if not content:
        return []
    if content.startswith("["):
        docs = json.loads(content)
    else:
        docs = [json.loads(line) for line in content.splitlines() if line.strip()]
    return [decode_extended_json(d) for d in docs]


def parse_users(docs: List[Dict[str, Any]]) -> List[User]:
    users: List[User] = []
    for doc in docs:
        if doc.get("id") is None:
            logger.warning(f"Skipping user document without id: {doc.get('_id')}")
            continue
        doc = dict(doc)
        for field in UNIX_FIELDS:
            doc[field] = _to_unix(doc.get(field))
        miner = dict(doc.get("miner") or {})
        miner["lastReward"] = _to_unix(miner.get("lastReward"))
        doc["miner"] = miner
        users.append(User.from_document(doc))
    return users


def parse_reserve(docs: List[Dict[str, Any]]) -> Optional[Reserve]:
    if not docs:
        return None
    if len(docs) > 1:
        logger.warning(f"Reserve export holds {len(docs)} documents, using the first one")
    return Reserve.from_document(docs[0])


class DataMigrationService:
    """Handles importing legacy data from MongoDB exports"""

    def __init__(self, db_pool: asyncpg.Pool):
        self.pool = db_pool
        self.users = UserQueries(db_pool)
        self.reserves = ReserveQueries(db_pool)

    async def import_mongo_export(
        self, users_file: Path, reserve_file: Optional[Path] = None, force: bool = False
    ) -> Dict[str, Any]:
        """Import users (and optionally the reserve); skipped if already done unless forced"""
        if not force and await self._is_migration_completed():
            logger.info("Data migration already completed, skipping")
            return {"status": "skipped", "users": 0, "reserve": False}

        users_file = Path(users_file)
        if not users_file.exists():
            raise FileNotFoundError(f"Users export not found: {users_file}")

        users = parse_users(load_export(users_file))
        reserve = None
        if reserve_file:
            reserve = parse_reserve(load_export(Path(reserve_file)))

        logger.info(f"Importing {len(users)} users{' and the reserve' if reserve else ''}...")
        for i, user in enumerate(users):
            if i and i % 500 == 0:
                logger.info(f"Progress: {i}/{len(users)} users")
            await self.users.upsert_user(user)

        if reserve:
            await self.reserves.upsert_reserve(reserve)

        await self._mark_migration_completed(users_file, len(users), reserve is not None)
        logger.info("Data migration completed successfully")
        return {"status": "completed", "users": len(users), "reserve": reserve is not None}

    async def _ensure_log_table(self, conn: asyncpg.Connection):
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS data_migration_log (
                id SERIAL PRIMARY KEY,
                migration_type VARCHAR(50) NOT NULL,
                source_file VARCHAR(255),
                completed BOOLEAN DEFAULT FALSE,
                completed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                notes TEXT
            )
        """
        )

    async def _is_migration_completed(self) -> bool:
        async with self.pool.acquire() as conn:
            await self._ensure_log_table(conn)
            completed = await conn.fetchval(
                """
                SELECT completed FROM data_migration_log
                WHERE migration_type = $1 AND completed = true
                LIMIT 1
            """,
                MIGRATION_TYPE,
            )
        return bool(completed)

    async def _mark_migration_completed(self, source: Path, user_count: int, with_reserve: bool):
        async with self.pool.acquire() as conn:
            await self._ensure_log_table(conn)
            await conn.execute(
                """
                INSERT INTO data_migration_log (migration_type, source_file, completed, notes)
                VALUES ($1, $2, $3, $4)
            """,
                MIGRATION_TYPE,
                str(source),
                True,
                f"Imported {user_count} users{' and the reserve' if with_reserve else ''} from {source.name}",
            )

    async def get_migration_status(self) -> Dict:
        """Get migration status information"""
        try:
            async with self.pool.acquire() as conn:
                await self._ensure_log_table(conn)
                records = await conn.fetch("SELECT * FROM data_migration_log ORDER BY completed_at DESC")
        except Exception as e:
            logger.error(f"Error getting migration status: {e}")
            return {"status": "error", "error": str(e)}

        migrations = [
            {
                "id": r["id"],
                "type": r["migration_type"],
                "source_file": r["source_file"],
                "completed": r["completed"],
                "completed_at": r["completed_at"],
                "notes": r["notes"],
            }
            for r in records
        ]
        if not migrations:
            return {"status": "not_started", "migrations": []}
        status = "completed" if any(m["completed"] for m in migrations) else "failed"
        return {"status": status, "migrations": migrations}
