"""
magnum/database/models/user.py
User model (balances + miner state)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# Document path -> column. Document paths are the persisted field names the
# bot layer and the web app rely on; columns are the flattened Postgres layout.
USER_COLUMNS: Dict[str, str] = {
    "username": "username",
    "first_name": "first_name",
    "magnumCoins": "magnum_coins",
    "stars": "stars",
    "totalEarnedMagnumCoins": "total_earned_magnum_coins",
    "totalEarnedStars": "total_earned_stars",
    "statistics.totalExchanges": "total_exchanges",
    "miner.active": "miner_active",
    "miner.totalEarned": "miner_total_earned",
    "miner.lastReward": "miner_last_reward",
    "miner.level": "miner_level",
    "miner.efficiency": "miner_efficiency",
    "created": "created",
    "lastSeen": "last_seen",
}


@dataclass
class MinerState:
    active: bool = False
    total_earned: float = 0.0
    last_reward: int = 0  # unix seconds, accrual checkpoint
    level: int = 1
    efficiency: float = 1.0

    def to_document(self) -> dict:
        return {
            "active": self.active,
            "totalEarned": self.total_earned,
            "lastReward": self.last_reward,
            "level": self.level,
            "efficiency": self.efficiency,
        }

    @classmethod
    def from_document(cls, doc: Optional[Dict[str, Any]]) -> "MinerState":
        doc = doc or {}
        return cls(
            active=bool(doc.get("active", False)),
            total_earned=float(doc.get("totalEarned") or 0),
            last_reward=int(doc.get("lastReward") or 0),
            level=int(doc.get("level") or 1),
            efficiency=float(doc.get("efficiency") or 1.0),
        )


@dataclass
class User:
    id: int  # Telegram user ID
    username: str = ""
    first_name: str = ""
    magnum_coins: float = 0.0
    stars: float = 0.0
    total_earned_magnum_coins: float = 0.0
    total_earned_stars: float = 0.0
    total_exchanges: int = 0
    miner: MinerState = field(default_factory=MinerState)
    created: int = 0
    last_seen: int = 0

    def balance(self, currency: str) -> float:
        """Balance by persisted currency name ('magnumCoins' | 'stars')"""
        if currency == "magnumCoins":
            return self.magnum_coins
        if currency == "stars":
            return self.stars
        raise ValueError(f"Unknown currency: {currency}")

    def to_document(self) -> dict:
        """Convert user to its persisted document shape"""
        return {
            "id": self.id,
            "username": self.username,
            "first_name": self.first_name,
            "magnumCoins": self.magnum_coins,
            "stars": self.stars,
            "totalEarnedMagnumCoins": self.total_earned_magnum_coins,
            "totalEarnedStars": self.total_earned_stars,
            "statistics": {"totalExchanges": self.total_exchanges},
            "miner": self.miner.to_document(),
            "created": self.created,
            "lastSeen": self.last_seen,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "User":
        """Create User from a persisted document (missing fields get defaults)"""
        statistics = doc.get("statistics") or {}
        return cls(
            id=int(doc["id"]),
            username=doc.get("username") or "",
            first_name=doc.get("first_name") or "",
            magnum_coins=float(doc.get("magnumCoins") or 0),
            stars=float(doc.get("stars") or 0),
            total_earned_magnum_coins=float(doc.get("totalEarnedMagnumCoins") or 0),
            total_earned_stars=float(doc.get("totalEarnedStars") or 0),
            total_exchanges=int(statistics.get("totalExchanges") or 0),
            miner=MinerState.from_document(doc.get("miner")),
            created=int(doc.get("created") or 0),
            last_seen=int(doc.get("lastSeen") or 0),
        )

    @classmethod
    def from_row(cls, row: dict) -> "User":
        """Create User from database row"""
        return cls(
            id=int(row["id"]),
            username=row.get("username") or "",
            first_name=row.get("first_name") or "",
            magnum_coins=float(row["magnum_coins"]),
            stars=float(row["stars"]),
            total_earned_magnum_coins=float(row["total_earned_magnum_coins"]),
            total_earned_stars=float(row["total_earned_stars"]),
            total_exchanges=int(row["total_exchanges"]),
            miner=MinerState(
                active=bool(row["miner_active"]),
                total_earned=float(row["miner_total_earned"]),
                last_reward=int(row["miner_last_reward"]),
                level=int(row["miner_level"]),
                efficiency=float(row["miner_efficiency"]),
            ),
            created=int(row["created"]),
            last_seen=int(row["last_seen"]),
        )
