# magnum/database/models/__init__.py
"""
magnum/database/models/__init__.py
Database models package
"""
from .ledger import ExchangeRecord, ExchangeStats, MinerRewardRecord, MinerTotals, TopExchanger
from .reserve import RESERVE_COLUMNS, Reserve
from .user import USER_COLUMNS, MinerState, User

__all__ = [
    "User",
    "MinerState",
    "Reserve",
    "ExchangeRecord",
    "MinerRewardRecord",
    "ExchangeStats",
    "TopExchanger",
    "MinerTotals",
    "USER_COLUMNS",
    "RESERVE_COLUMNS",
]
