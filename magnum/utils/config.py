# magnum/utils/config.py

import os
from dataclasses import dataclass
from typing import List


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default) or default)


@dataclass
class Config:
    # Telegram (notifications only; the command layer lives elsewhere)
    bot_token: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    admin_chat_id: int = int(os.getenv("ADMIN_CHAT_ID", "0") or "0")

    # Database (Postgres)
    db_host: str = os.getenv("DB_HOST", "postgres")
    db_port: int = int(os.getenv("DB_PORT", "5432"))
    db_name: str = os.getenv("DB_NAME", "magnum_stars")
    db_user: str = os.getenv("DB_USER", "magnum_bot")
    db_password: str = os.getenv("DB_PASSWORD", "")
    db_pool_min: int = int(os.getenv("DB_POOL_MIN", "5") or "5")
    db_pool_max: int = int(os.getenv("DB_POOL_MAX", "20") or "20")
    db_command_timeout: float = _env_float("DB_COMMAND_TIMEOUT", "30")

    # Engines
    storage_timeout: float = _env_float("STORAGE_TIMEOUT", "10")
    user_cache_ttl: float = _env_float("USER_CACHE_TTL", "300")

    # Exchange
    exchange_min_amount: float = _env_float("EXCHANGE_MIN_AMOUNT", "1")
    initial_reserve_magnum_coins: float = _env_float("INITIAL_RESERVE_MAGNUM_COINS", "1000000")
    initial_reserve_stars: float = _env_float("INITIAL_RESERVE_STARS", "1000000")

    # New users
    new_user_stars: float = _env_float("NEW_USER_STARS", "100")
    new_user_magnum_coins: float = _env_float("NEW_USER_MAGNUM_COINS", "0")

    # Miner
    miner_reward_per_hour: float = _env_float("MINER_REWARD_PER_HOUR", "0.1")
    miner_upgrade_cost: float = _env_float("MINER_UPGRADE_COST", "1000")
    miner_efficiency_step: float = _env_float("MINER_EFFICIENCY_STEP", "0.1")
    miner_process_interval: float = _env_float("MINER_PROCESS_INTERVAL", "1800")
    miner_notifications: bool = _env_bool("MINER_NOTIFICATIONS", True)

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "magnum.log")

    @property
    def database_url(self) -> str:
        """Synchronous psycopg2 URL used by Alembic"""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    def validate(self) -> List[str]:
        """Names of critical settings that are missing."""
        missing = []
        if not self.db_password:
            missing.append("DB_PASSWORD")
        return missing
