# magnum/database/queries/exchange_queries.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Mapping, Optional

import asyncpg

from ..models import (
    RESERVE_COLUMNS,
    USER_COLUMNS,
    ExchangeRecord,
    ExchangeStats,
    Reserve,
    TopExchanger,
    User,
)
from .reserve_queries import RESERVE_ID
from .sql_builder import build_update


class PgExchangeUnit:
    """User + reserve rows locked FOR UPDATE inside one transaction."""

    def __init__(self, conn: asyncpg.Connection, user: Optional[User], reserve: Optional[Reserve]):
        self.conn = conn
        self.user = user
        self.reserve = reserve

    async def apply(
        self,
        *,
        user_inc: Mapping[str, float],
        user_set: Mapping[str, Any],
        reserve_inc: Mapping[str, float],
        reserve_set: Mapping[str, Any],
    ) -> None:
        if self.user is None or self.reserve is None:
            raise RuntimeError("Exchange unit has no user or reserve to update")

        sql, args = build_update(
            "users",
            USER_COLUMNS,
            ["id = $1"],
            [self.user.id],
            inc=user_inc,
            set_=user_set,
            floor=[p for p in user_inc if p in ("magnumCoins", "stars")],
        )
        if await self.conn.fetchval(sql, *args) is None:
            raise ValueError("User balance would become negative")

        sql, args = build_update(
            "exchange_reserve",
            RESERVE_COLUMNS,
            ["id = $1"],
            [RESERVE_ID],
            inc=reserve_inc,
            set_=reserve_set,
            floor=[p for p in reserve_inc if p in ("magnumCoins", "stars")],
            extra_assignments=["version = version + 1"],
        )
        if await self.conn.fetchval(sql, *args) is None:
            raise ValueError("Reserve would become negative")


class ExchangeQueries:
    def __init__(self, db_pool: asyncpg.Pool):
        self.pool = db_pool

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
            CREATE TABLE IF NOT EXISTS exchange_history(
              id BIGSERIAL PRIMARY KEY,
              user_id BIGINT NOT NULL,
              type TEXT NOT NULL CHECK (type IN ('magnum_to_stars', 'stars_to_magnum')),
              amount DOUBLE PRECISION NOT NULL,
              received DOUBLE PRECISION NOT NULL,
              commission DOUBLE PRECISION NOT NULL,
              created_at TIMESTAMPTZ NOT NULL DEFAULT now()
            );
            """
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_exchange_history_user_at ON exchange_history(user_id, created_at desc);"
            )

    @asynccontextmanager
    async def open_exchange(self, user_id: int) -> AsyncIterator[PgExchangeUnit]:
        """
        Lock the reserve, then the user (always in that order), and hand out a
        unit bound to the open transaction. Raising inside the block rolls back.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                reserve_row = await conn.fetchrow(
                    "SELECT * FROM exchange_reserve WHERE id = $1 FOR UPDATE", RESERVE_ID
                )
                user_row = await conn.fetchrow(
                    "SELECT * FROM users WHERE id = $1 FOR UPDATE", user_id
                )
                yield PgExchangeUnit(
                    conn,
                    User.from_row(dict(user_row)) if user_row else None,
                    Reserve.from_row(dict(reserve_row)) if reserve_row else None,
                )

    async def insert(self, record: ExchangeRecord) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
            INSERT INTO exchange_history(user_id, type, amount, received, commission, created_at)
            VALUES ($1, $2, $3, $4, $5, $6)
            """,
                record.user_id,
                record.type,
                float(record.amount),
                float(record.received),
                float(record.commission),
                record.created_at,
            )

    async def history(self, user_id: int, limit: int = 10) -> List[ExchangeRecord]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
            SELECT * FROM exchange_history
            WHERE user_id = $1
            ORDER BY created_at DESC
            LIMIT $2
            """,
                user_id,
                limit,
            )
        return [ExchangeRecord.from_row(dict(r)) for r in rows]

    async def stats(self) -> ExchangeStats:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
            SELECT COUNT(*) AS total_exchanges,
                   COALESCE(SUM(amount), 0) AS total_volume,
                   COALESCE(SUM(commission), 0) AS total_commission,
                   COALESCE(AVG(amount), 0) AS avg_exchange_amount
            FROM exchange_history
            """
            )
        return ExchangeStats(
            total_exchanges=int(row["total_exchanges"]),
            total_volume=float(row["total_volume"]),
            total_commission=float(row["total_commission"]),
            avg_exchange_amount=float(row["avg_exchange_amount"]),
        )

    async def top_exchangers(self, limit: int = 10) -> List[TopExchanger]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
            SELECT h.user_id,
                   COALESCE(NULLIF(u.username, ''), 'Unknown') AS username,
                   COUNT(*) AS total_exchanges,
                   SUM(h.amount) AS total_volume,
                   SUM(h.received) AS total_received
            FROM exchange_history h
            LEFT JOIN users u ON u.id = h.user_id
            GROUP BY h.user_id, u.username
            ORDER BY total_volume DESC
            LIMIT $1
            """,
                limit,
            )
        return [
            TopExchanger(
                user_id=int(r["user_id"]),
                username=r["username"],
                total_exchanges=int(r["total_exchanges"]),
                total_volume=float(r["total_volume"]),
                total_received=float(r["total_received"]),
            )
            for r in rows
        ]
