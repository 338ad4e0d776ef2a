"""
magnum/database/queries/user_queries.py
User balance / miner queries for PostgreSQL
"""

from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional

import asyncpg

from ..models import USER_COLUMNS, MinerTotals, User
from .sql_builder import build_update


class UserQueries:
    def __init__(self, db_pool: asyncpg.Pool):
        self.pool = db_pool

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
            CREATE TABLE IF NOT EXISTS users(
              id BIGINT PRIMARY KEY,
              username TEXT NOT NULL DEFAULT '',
              first_name TEXT NOT NULL DEFAULT '',
              magnum_coins DOUBLE PRECISION NOT NULL DEFAULT 0 CHECK (magnum_coins >= 0),
              stars DOUBLE PRECISION NOT NULL DEFAULT 0 CHECK (stars >= 0),
              total_earned_magnum_coins DOUBLE PRECISION NOT NULL DEFAULT 0,
              total_earned_stars DOUBLE PRECISION NOT NULL DEFAULT 0,
              total_exchanges BIGINT NOT NULL DEFAULT 0,
              miner_active BOOLEAN NOT NULL DEFAULT FALSE,
              miner_total_earned DOUBLE PRECISION NOT NULL DEFAULT 0,
              miner_last_reward BIGINT NOT NULL DEFAULT 0,
              miner_level INT NOT NULL DEFAULT 1,
              miner_efficiency DOUBLE PRECISION NOT NULL DEFAULT 1.0,
              created BIGINT NOT NULL DEFAULT 0,
              last_seen BIGINT NOT NULL DEFAULT 0
            );
            """
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_users_miner_active ON users(miner_active) WHERE miner_active;"
            )

    async def get_user(self, user_id: int) -> Optional[User]:
        """Get user by Telegram ID"""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM users WHERE id = $1", user_id)
        return User.from_row(dict(row)) if row else None

    async def create_user(self, user: User) -> User:
        """Insert user if absent, return the stored row"""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
            INSERT INTO users(
                id, username, first_name, magnum_coins, stars,
                total_earned_magnum_coins, total_earned_stars, total_exchanges,
                miner_active, miner_total_earned, miner_last_reward,
                miner_level, miner_efficiency, created, last_seen
            ) VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$10,$11,$12,$13,$14,$15)
            ON CONFLICT (id) DO NOTHING
            """,
                *self._values(user),
            )
            row = await conn.fetchrow("SELECT * FROM users WHERE id = $1", user.id)
        return User.from_row(dict(row))

    async def upsert_user(self, user: User) -> None:
        """Insert or overwrite a user (used by the Mongo import)"""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
            INSERT INTO users(
                id, username, first_name, magnum_coins, stars,
                total_earned_magnum_coins, total_earned_stars, total_exchanges,
                miner_active, miner_total_earned, miner_last_reward,
                miner_level, miner_efficiency, created, last_seen
            ) VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$10,$11,$12,$13,$14,$15)
            ON CONFLICT (id) DO UPDATE SET
                username = EXCLUDED.username,
                first_name = EXCLUDED.first_name,
                magnum_coins = EXCLUDED.magnum_coins,
                stars = EXCLUDED.stars,
                total_earned_magnum_coins = EXCLUDED.total_earned_magnum_coins,
                total_earned_stars = EXCLUDED.total_earned_stars,
                total_exchanges = EXCLUDED.total_exchanges,
                miner_active = EXCLUDED.miner_active,
                miner_total_earned = EXCLUDED.miner_total_earned,
                miner_last_reward = EXCLUDED.miner_last_reward,
                miner_level = EXCLUDED.miner_level,
                miner_efficiency = EXCLUDED.miner_efficiency,
                created = EXCLUDED.created,
                last_seen = EXCLUDED.last_seen
            """,
                *self._values(user),
            )

    @staticmethod
    def _values(user: User) -> tuple:
        return (
            user.id,
            user.username,
            user.first_name,
            float(user.magnum_coins),
            float(user.stars),
            float(user.total_earned_magnum_coins),
            float(user.total_earned_stars),
            int(user.total_exchanges),
            bool(user.miner.active),
            float(user.miner.total_earned),
            int(user.miner.last_reward),
            int(user.miner.level),
            float(user.miner.efficiency),
            int(user.created),
            int(user.last_seen),
        )

    async def update_user(
        self,
        user_id: int,
        *,
        inc: Optional[Mapping[str, float]] = None,
        set_: Optional[Mapping[str, Any]] = None,
        expect: Optional[Mapping[str, Any]] = None,
        floor: Iterable[str] = (),
    ) -> bool:
        """Atomic conditional update; True if the row was written"""
        sql, args = build_update(
            "users",
            USER_COLUMNS,
            ["id = $1"],
            [user_id],
            inc=inc,
            set_=set_,
            expect=expect,
            floor=floor,
        )
        async with self.pool.acquire() as conn:
            written = await conn.fetchval(sql, *args)
        return written is not None

    async def get_users(self, user_ids: Iterable[int]) -> List[User]:
        ids = [int(i) for i in user_ids]
        if not ids:
            return []
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM users WHERE id = ANY($1::bigint[])", ids)
        return [User.from_row(dict(r)) for r in rows]

    async def get_active_miners(self) -> List[User]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM users WHERE miner_active ORDER BY id")
        return [User.from_row(dict(r)) for r in rows]

    async def top_miners(self, limit: int) -> List[User]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
            SELECT * FROM users
            WHERE miner_active
            ORDER BY miner_total_earned DESC
            LIMIT $1
            """,
                limit,
            )
        return [User.from_row(dict(r)) for r in rows]

    async def miner_totals(self) -> MinerTotals:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
            SELECT COUNT(*) FILTER (WHERE miner_active) AS total_active_miners,
                   COALESCE(SUM(miner_total_earned), 0) AS total_miner_earnings,
                   COALESCE(AVG(miner_level), 1) AS avg_miner_level,
                   COALESCE(AVG(miner_efficiency), 1) AS avg_miner_efficiency
            FROM users
            """
            )
        return MinerTotals(
            total_active_miners=int(row["total_active_miners"]),
            total_miner_earnings=float(row["total_miner_earnings"]),
            avg_miner_level=float(row["avg_miner_level"]),
            avg_miner_efficiency=float(row["avg_miner_efficiency"]),
        )
