# magnum/database/queries/miner_queries.py
from __future__ import annotations

from typing import List

import asyncpg

from ..models import MinerRewardRecord


class MinerQueries:
    def __init__(self, db_pool: asyncpg.Pool):
        self.pool = db_pool

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
            CREATE TABLE IF NOT EXISTS miner_rewards(
              id BIGSERIAL PRIMARY KEY,
              user_id BIGINT NOT NULL,
              amount DOUBLE PRECISION NOT NULL,
              hours INT NOT NULL CHECK (hours > 0),
              created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            );
            """
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_miner_rewards_user_at ON miner_rewards(user_id, created_at desc);"
            )

    async def insert(self, record: MinerRewardRecord) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                "INSERT INTO miner_rewards(user_id, amount, hours, created_at) VALUES ($1, $2, $3, $4)",
                record.user_id,
                float(record.amount),
                int(record.hours),
                record.created_at,
            )

    async def history(self, user_id: int, limit: int = 10) -> List[MinerRewardRecord]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
            SELECT * FROM miner_rewards
            WHERE user_id = $1
            ORDER BY created_at DESC
            LIMIT $2
            """,
                user_id,
                limit,
            )
        return [MinerRewardRecord.from_row(dict(r)) for r in rows]
