"""
magnum/database/models/reserve.py
Exchange reserve (singleton liquidity pool)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

RESERVE_COLUMNS: Dict[str, str] = {
    "magnumCoins": "magnum_coins",
    "stars": "stars",
    "totalExchanges": "total_exchanges",
    "totalVolume": "total_volume",
    "lastUpdated": "last_updated",
}


@dataclass
class Reserve:
    magnum_coins: float
    stars: float
    total_exchanges: int = 0
    total_volume: float = 0.0
    last_updated: Optional[datetime] = None
    version: int = 0

    def balance(self, currency: str) -> float:
        if currency == "magnumCoins":
            return self.magnum_coins
        if currency == "stars":
            return self.stars
        raise ValueError(f"Unknown currency: {currency}")

    @property
    def is_liquid(self) -> bool:
        """Both pools hold something, so a ratio exists in both directions"""
        return self.magnum_coins > 0 and self.stars > 0

    @property
    def magnum_to_stars(self) -> float:
        return self.stars / self.magnum_coins

    @property
    def stars_to_magnum(self) -> float:
        return self.magnum_coins / self.stars

    def to_document(self) -> dict:
        return {
            "magnumCoins": self.magnum_coins,
            "stars": self.stars,
            "totalExchanges": self.total_exchanges,
            "totalVolume": self.total_volume,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Reserve":
        return cls(
            magnum_coins=float(doc.get("magnumCoins") or 0),
            stars=float(doc.get("stars") or 0),
            total_exchanges=int(doc.get("totalExchanges") or 0),
            total_volume=float(doc.get("totalVolume") or 0),
            last_updated=doc.get("lastUpdated"),
            version=int(doc.get("version") or 0),
        )

    @classmethod
    def from_row(cls, row: dict) -> "Reserve":
        return cls(
            magnum_coins=float(row["magnum_coins"]),
            stars=float(row["stars"]),
            total_exchanges=int(row["total_exchanges"]),
            total_volume=float(row["total_volume"]),
            last_updated=row.get("last_updated"),
            version=int(row["version"]),
        )
