# magnum/database/queries/reserve_queries.py
from __future__ import annotations

from typing import Optional

import asyncpg

from ..models import Reserve

RESERVE_ID = 1


class ReserveQueries:
    def __init__(self, db_pool: asyncpg.Pool):
        self.pool = db_pool

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
            CREATE TABLE IF NOT EXISTS exchange_reserve(
              id SMALLINT PRIMARY KEY DEFAULT 1 CHECK (id = 1),
              magnum_coins DOUBLE PRECISION NOT NULL CHECK (magnum_coins >= 0),
              stars DOUBLE PRECISION NOT NULL CHECK (stars >= 0),
              total_exchanges BIGINT NOT NULL DEFAULT 0,
              total_volume DOUBLE PRECISION NOT NULL DEFAULT 0,
              last_updated TIMESTAMPTZ NOT NULL DEFAULT now(),
              version BIGINT NOT NULL DEFAULT 0
            );
            """
            )

    async def get_reserve(self) -> Optional[Reserve]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM exchange_reserve WHERE id = $1", RESERVE_ID)
        return Reserve.from_row(dict(row)) if row else None

    async def ensure_reserve(self, magnum_coins: float, stars: float) -> Reserve:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
            INSERT INTO exchange_reserve(id, magnum_coins, stars)
            VALUES ($1, $2, $3)
            ON CONFLICT (id) DO NOTHING
            """,
                RESERVE_ID,
                float(magnum_coins),
                float(stars),
            )
            row = await conn.fetchrow("SELECT * FROM exchange_reserve WHERE id = $1", RESERVE_ID)
        return Reserve.from_row(dict(row))

    async def upsert_reserve(self, reserve: Reserve) -> None:
        """Overwrite the reserve pools and counters (used by the Mongo import)"""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
            INSERT INTO exchange_reserve(id, magnum_coins, stars, total_exchanges, total_volume, last_updated)
            VALUES ($1, $2, $3, $4, $5, COALESCE($6, now()))
            ON CONFLICT (id) DO UPDATE SET
                magnum_coins = EXCLUDED.magnum_coins,
                stars = EXCLUDED.stars,
                total_exchanges = EXCLUDED.total_exchanges,
                total_volume = EXCLUDED.total_volume,
                last_updated = EXCLUDED.last_updated,
                version = exchange_reserve.version + 1
            """,
                RESERVE_ID,
                float(reserve.magnum_coins),
                float(reserve.stars),
                int(reserve.total_exchanges),
                float(reserve.total_volume),
                reserve.last_updated,
            )
