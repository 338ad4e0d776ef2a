"""
magnum/database/database_service.py
Database initialization and connection management with admin logging
"""

import asyncio
import asyncpg
import logging
from typing import Optional
from datetime import datetime

from ..utils.config import Config
from ..services.logging_service import LogLevel
from .queries import ExchangeQueries, MinerQueries, ReserveQueries, UserQueries

logger = logging.getLogger(__name__)

CONNECT_ATTEMPTS = 30
TABLES = ("users", "exchange_reserve", "exchange_history", "miner_rewards")


class DatabaseService:
    """Handles database readiness, the asyncpg pool and schema bootstrap"""

    def __init__(self, config: Config):
        self.config = config
        self.pool: Optional[asyncpg.Pool] = None
        self.admin_logger = None
        self.connection_stats = {
            "connections_created": 0,
            "connections_failed": 0,
            "queries_executed": 0,
            "queries_failed": 0,
            "startup_time": None,
        }

        # Query objects, available once initialize() has run
        self.users: Optional[UserQueries] = None
        self.reserves: Optional[ReserveQueries] = None
        self.exchanges: Optional[ExchangeQueries] = None
        self.miner_rewards: Optional[MinerQueries] = None

        self.db_host = config.db_host
        self.db_port = config.db_port
        self.db_name = config.db_name
        self.db_user = config.db_user
        self.db_password = config.db_password

        # Sync URL (psycopg2) for Alembic
        self.sync_url = config.database_url

    def set_logger(self, admin_logger):
        """Set the admin logger for database operations"""
        self.admin_logger = admin_logger

    async def initialize(self) -> asyncpg.Pool:
        """Wait for the database, create the pool and ensure the schema"""
        start_time = datetime.utcnow()
        self.connection_stats["startup_time"] = start_time

        logger.info("Initializing database service...")

        try:
            await self._ensure_database_exists()
            self.pool = await self._create_connection_pool()

            self.users = UserQueries(self.pool)
            self.reserves = ReserveQueries(self.pool)
            self.exchanges = ExchangeQueries(self.pool)
            self.miner_rewards = MinerQueries(self.pool)
            await self.ensure_schema()

            init_time = (datetime.utcnow() - start_time).total_seconds()
            logger.info(f"Database service initialized successfully in {init_time:.2f}s")

            if self.admin_logger:
                await self.admin_logger.log_custom(
                    service="Database Service",
                    title="Database Initialization Complete",
                    description="Connection pool and economy tables ready",
                    level=LogLevel.SUCCESS,
                    fields={
                        "Initialization Time": f"{init_time:.2f}s",
                        "Connection Pool": f"Min: {self.config.db_pool_min}, Max: {self.config.db_pool_max}",
                        "Database": f"{self.db_name}@{self.db_host}:{self.db_port}",
                        "Status": "🟢 Operational",
                    },
                )

            return self.pool

        except Exception as e:
            init_time = (datetime.utcnow() - start_time).total_seconds()
            logger.error(f"Failed to initialize database after {init_time:.2f}s: {e}")

            if self.admin_logger:
                await self.admin_logger.log_error(
                    service="Database Service",
                    error=e,
                    context=f"Database initialization failed after {init_time:.2f}s",
                )
            raise

    async def _ensure_database_exists(self):
        """Wait until the target database accepts connections"""
        logger.info(f"Checking if database '{self.db_name}' is reachable...")

        for attempt in range(CONNECT_ATTEMPTS):
            try:
                test_conn = await asyncpg.connect(
                    host=self.db_host,
                    port=self.db_port,
                    user=self.db_user,
                    password=self.db_password,
                    database=self.db_name,
                )
                version = await test_conn.fetchval("SELECT version()")
                await test_conn.close()

                logger.info(f"Database '{self.db_name}' is ready - PostgreSQL: {version[:50]}...")
                self.connection_stats["connections_created"] += 1
                return

            except Exception as e:
                self.connection_stats["connections_failed"] += 1
                if attempt < CONNECT_ATTEMPTS - 1:
                    logger.info(
                        f"Database not ready (attempt {attempt + 1}/{CONNECT_ATTEMPTS}), waiting... Error: {e}"
                    )
                    await asyncio.sleep(1)
                else:
                    logger.error(f"Failed to connect to database after {CONNECT_ATTEMPTS} attempts: {e}")
                    raise

    async def _create_connection_pool(self) -> asyncpg.Pool:
        """Create asyncpg connection pool"""
        logger.info(f"Creating connection pool to {self.db_host}:{self.db_port}/{self.db_name}")

        try:
            pool = await asyncpg.create_pool(
                host=self.db_host,
                port=self.db_port,
                user=self.db_user,
                password=self.db_password,
                database=self.db_name,
                min_size=self.config.db_pool_min,
                max_size=self.config.db_pool_max,
                command_timeout=self.config.db_command_timeout,
            )

            async with pool.acquire() as conn:
                current_db = await conn.fetchval("SELECT current_database()")
                if current_db != self.db_name:
                    raise RuntimeError(f"Connected to wrong database: {current_db}, expected: {self.db_name}")

            self.connection_stats["connections_created"] += 1
            return pool

        except Exception as e:
            logger.error(f"Failed to create connection pool: {e}")
            self.connection_stats["connections_failed"] += 1
            raise

    async def ensure_schema(self):
        """Create missing economy tables and the reserve row"""
        for queries in (self.users, self.reserves, self.exchanges, self.miner_rewards):
            await queries.ensure_schema()

        reserve = await self.reserves.ensure_reserve(
            self.config.initial_reserve_magnum_coins, self.config.initial_reserve_stars
        )
        logger.info(f"Exchange reserve ready: {reserve.magnum_coins} magnumCoins / {reserve.stars} stars")

    async def close(self):
        """Close all database connections"""
        logger.info("Closing database connections...")

        if self.pool:
            try:
                await self.pool.close()
                logger.info("Connection pool closed")
            except Exception as e:
                logger.error(f"Error closing connection pool: {e}")
                if self.admin_logger:
                    await self.admin_logger.log_error(
                        service="Database Service", error=e, context="Connection pool close failed"
                    )
            self.pool = None

        logger.info("Database service shutdown complete")

    async def health_check(self) -> bool:
        """Check database connection health"""
        try:
            if not self.pool:
                return False

            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                self.connection_stats["queries_executed"] += 1
                return True

        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            self.connection_stats["queries_failed"] += 1
            if self.admin_logger:
                await self.admin_logger.log_error(
                    service="Database Service", error=e, context="Database health check failed"
                )
            return False

    async def get_stats(self) -> dict:
        """Get database service statistics"""
        stats = dict(self.connection_stats)

        if stats["startup_time"]:
            stats["uptime_seconds"] = (datetime.utcnow() - stats["startup_time"]).total_seconds()
            stats["startup_time"] = stats["startup_time"].isoformat()

        if self.pool:
            stats.update(
                {
                    "pool_size": self.pool.get_size(),
                    "pool_max_size": self.pool.get_max_size(),
                    "pool_min_size": self.pool.get_min_size(),
                }
            )

        try:
            if self.pool:
                async with self.pool.acquire() as conn:
                    stats["database_size"] = await conn.fetchval(
                        "SELECT pg_size_pretty(pg_database_size($1))", self.db_name
                    )
                    for table in TABLES:
                        stats[f"{table}_rows"] = await conn.fetchval(f"SELECT COUNT(*) FROM {table}")
        except Exception as e:
            stats["stats_error"] = str(e)

        return stats
