"""
magnum/services/__init__.py
Economy core services
"""

from .errors import EconomyError
from .exchange_service import Currency, ExchangeDirection, ExchangeEngine
from .logging_service import AdminLogger, LogCategory, LogLevel
from .miner_service import MinerEngine
from .results import Result
from .user_cache import UserCache

__all__ = [
    "AdminLogger",
    "Currency",
    "EconomyError",
    "ExchangeDirection",
    "ExchangeEngine",
    "LogCategory",
    "LogLevel",
    "MinerEngine",
    "Result",
    "UserCache",
]
