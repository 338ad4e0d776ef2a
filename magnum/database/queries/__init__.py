# magnum/database/queries/__init__.py
"""
magnum/database/queries/__init__.py
Database queries package
"""
from .exchange_queries import ExchangeQueries, PgExchangeUnit
from .miner_queries import MinerQueries
from .reserve_queries import ReserveQueries
from .user_queries import UserQueries

__all__ = [
    "UserQueries",
    "ReserveQueries",
    "ExchangeQueries",
    "PgExchangeUnit",
    "MinerQueries",
]
