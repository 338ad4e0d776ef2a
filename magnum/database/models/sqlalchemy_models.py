"""
magnum/database/models/sqlalchemy_models.py
SQLAlchemy models for Alembic migrations
"""

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func, text

Base = declarative_base()


class User(Base):
    """Telegram user with both balances and the miner state"""
    __tablename__ = 'users'

    id = Column(BigInteger, primary_key=True)  # Telegram user ID
    username = Column(Text, nullable=False, server_default='')
    first_name = Column(Text, nullable=False, server_default='')
    magnum_coins = Column(Float, nullable=False, server_default='0')
    stars = Column(Float, nullable=False, server_default='0')
    total_earned_magnum_coins = Column(Float, nullable=False, server_default='0')
    total_earned_stars = Column(Float, nullable=False, server_default='0')
    total_exchanges = Column(BigInteger, nullable=False, server_default='0')
    miner_active = Column(Boolean, nullable=False, server_default=text('false'))
    miner_total_earned = Column(Float, nullable=False, server_default='0')
    miner_last_reward = Column(BigInteger, nullable=False, server_default='0')  # unix seconds
    miner_level = Column(Integer, nullable=False, server_default='1')
    miner_efficiency = Column(Float, nullable=False, server_default='1.0')
    created = Column(BigInteger, nullable=False, server_default='0')  # unix seconds
    last_seen = Column(BigInteger, nullable=False, server_default='0')  # unix seconds

    __table_args__ = (
        CheckConstraint('magnum_coins >= 0'),
        CheckConstraint('stars >= 0'),
        Index('idx_users_miner_active', 'miner_active', postgresql_where=text('miner_active')),
    )


class ExchangeReserve(Base):
    """Single-row liquidity pool"""
    __tablename__ = 'exchange_reserve'

    id = Column(SmallInteger, primary_key=True, server_default='1')
    magnum_coins = Column(Float, nullable=False)
    stars = Column(Float, nullable=False)
    total_exchanges = Column(BigInteger, nullable=False, server_default='0')
    total_volume = Column(Float, nullable=False, server_default='0')
    last_updated = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    version = Column(BigInteger, nullable=False, server_default='0')

    __table_args__ = (
        CheckConstraint('id = 1'),
        CheckConstraint('magnum_coins >= 0'),
        CheckConstraint('stars >= 0'),
    )


class ExchangeHistory(Base):
    """Append-only exchange ledger"""
    __tablename__ = 'exchange_history'

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, nullable=False)
    type = Column(Text, nullable=False)
    amount = Column(Float, nullable=False)
    received = Column(Float, nullable=False)
    commission = Column(Float, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("type IN ('magnum_to_stars', 'stars_to_magnum')"),
        Index('idx_exchange_history_user_at', 'user_id', created_at.desc()),
    )


class MinerReward(Base):
    """Append-only miner payout ledger"""
    __tablename__ = 'miner_rewards'

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, nullable=False)
    amount = Column(Float, nullable=False)
    hours = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint('hours > 0'),
        Index('idx_miner_rewards_user_at', 'user_id', created_at.desc()),
    )


class DataMigrationLog(Base):
    """Tracks one-off data imports"""
    __tablename__ = 'data_migration_log'

    id = Column(Integer, primary_key=True, autoincrement=True)
    migration_type = Column(String(50), nullable=False)
    source_file = Column(String(255), nullable=True)
    completed = Column(Boolean, default=False)
    completed_at = Column(DateTime, server_default=func.now())
    notes = Column(Text, nullable=True)
