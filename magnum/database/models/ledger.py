# magnum/database/models/ledger.py
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class ExchangeRecord:
    user_id: int
    type: str  # 'magnum_to_stars' | 'stars_to_magnum'
    amount: float
    received: float
    commission: float
    created_at: datetime
    id: Optional[int] = None

    def to_document(self) -> dict:
        return {
            "userId": self.user_id,
            "type": self.type,
            "amount": self.amount,
            "received": self.received,
            "commission": self.commission,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_row(cls, row: dict) -> "ExchangeRecord":
        return cls(
            id=row.get("id"),
            user_id=int(row["user_id"]),
            type=row["type"],
            amount=float(row["amount"]),
            received=float(row["received"]),
            commission=float(row["commission"]),
            created_at=row["created_at"],
        )


@dataclass
class MinerRewardRecord:
    user_id: int
    amount: float
    hours: int
    created_at: datetime
    id: Optional[int] = None

    def to_document(self) -> dict:
        return {
            "userId": self.user_id,
            "amount": self.amount,
            "hours": self.hours,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_row(cls, row: dict) -> "MinerRewardRecord":
        return cls(
            id=row.get("id"),
            user_id=int(row["user_id"]),
            amount=float(row["amount"]),
            hours=int(row["hours"]),
            created_at=row["created_at"],
        )


@dataclass
class ExchangeStats:
    total_exchanges: int = 0
    total_volume: float = 0.0
    total_commission: float = 0.0
    avg_exchange_amount: float = 0.0

    def to_dict(self) -> dict:
        return {
            "totalExchanges": self.total_exchanges,
            "totalVolume": self.total_volume,
            "totalCommission": self.total_commission,
            "avgExchangeAmount": self.avg_exchange_amount,
        }


@dataclass
class TopExchanger:
    user_id: int
    username: str
    total_exchanges: int
    total_volume: float
    total_received: float

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "username": self.username,
            "totalExchanges": self.total_exchanges,
            "totalVolume": self.total_volume,
            "totalReceived": self.total_received,
        }


@dataclass
class MinerTotals:
    total_active_miners: int = 0
    total_miner_earnings: float = 0.0
    avg_miner_level: float = 1.0
    avg_miner_efficiency: float = 1.0

    def to_dict(self) -> dict:
        return {
            "totalActiveMiners": self.total_active_miners,
            "totalMinerEarnings": self.total_miner_earnings,
            "avgMinerLevel": self.avg_miner_level,
            "avgMinerEfficiency": self.avg_miner_efficiency,
        }
