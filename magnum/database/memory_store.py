"""
magnum/database/memory_store.py
In-process document store implementing the repository contracts.

Users and the reserve are kept as persisted-shape documents (the same dicts
``to_document`` produces) so updates use the document paths directly.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional

from .models import (
    RESERVE_COLUMNS,
    USER_COLUMNS,
    ExchangeRecord,
    ExchangeStats,
    MinerRewardRecord,
    MinerTotals,
    Reserve,
    TopExchanger,
    User,
)
from .repositories import validate_paths

logger = logging.getLogger(__name__)


def _get_path(doc: Dict[str, Any], path: str) -> Any:
    node: Any = doc
    for part in path.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    return node


def _set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    node = doc
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value


def normalize_user_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Fill missing or null fields in place with the values ``User.from_document`` reads"""
    for key, value in User.from_document(doc).to_document().items():
        if isinstance(value, dict) and isinstance(doc.get(key), dict):
            doc[key].update(value)
        else:
            doc[key] = value
    return doc


def apply_update(
    doc: Dict[str, Any],
    allowed: Dict[str, str],
    *,
    inc: Optional[Mapping[str, float]] = None,
    set_: Optional[Mapping[str, Any]] = None,
    expect: Optional[Mapping[str, Any]] = None,
    floor: Iterable[str] = (),
) -> bool:
    """
    Apply ``inc``/``set_`` to ``doc`` in place if the guards hold.

    Mirrors the conditional UPDATE the Postgres queries build: nothing is
    written unless every ``expect`` path matches and every ``floor`` path
    stays >= 0 after the increment.
    """
    inc = dict(inc or {})
    set_ = dict(set_ or {})
    expect = dict(expect or {})
    floor = list(floor)

    validate_paths(list(inc) + list(set_) + list(expect) + floor, allowed)
    overlap = set(inc) & set(set_)
    if overlap:
        raise ValueError(f"Field(s) both incremented and set: {', '.join(sorted(overlap))}")
    if not inc and not set_:
        raise ValueError("Nothing to update")

    for path, value in expect.items():
        if _get_path(doc, path) != value:
            return False
    for path in floor:
        current = _get_path(doc, path) or 0
        if current + inc.get(path, 0) < 0:
            return False

    for path, delta in inc.items():
        _set_path(doc, path, (_get_path(doc, path) or 0) + delta)
    for path, value in set_.items():
        _set_path(doc, path, value)
    return True


class MemoryExchangeUnit:
    """Exchange writes applied to the live documents, undone if the block raises."""

    def __init__(self, user_doc: Optional[dict], reserve_doc: Optional[dict]):
        self._user_doc = user_doc
        self._reserve_doc = reserve_doc
        self.user = User.from_document(user_doc) if user_doc else None
        self.reserve = Reserve.from_document(reserve_doc) if reserve_doc else None
        self._undo: List[tuple] = []

    async def apply(
        self,
        *,
        user_inc: Mapping[str, float],
        user_set: Mapping[str, Any],
        reserve_inc: Mapping[str, float],
        reserve_set: Mapping[str, Any],
    ) -> None:
        if self._user_doc is None or self._reserve_doc is None:
            raise RuntimeError("Exchange unit has no user or reserve to update")

        user_floor = [p for p in user_inc if p in ("magnumCoins", "stars")]
        reserve_floor = [p for p in reserve_inc if p in ("magnumCoins", "stars")]
        user_before = {p: _get_path(self._user_doc, p) for p in user_set}
        reserve_before = {p: _get_path(self._reserve_doc, p) for p in reserve_set}

        if not apply_update(self._user_doc, USER_COLUMNS, inc=user_inc, set_=user_set, floor=user_floor):
            raise ValueError("User balance would become negative")
        if not apply_update(
            self._reserve_doc, RESERVE_COLUMNS, inc=reserve_inc, set_=reserve_set, floor=reserve_floor
        ):
            self._revert(self._user_doc, user_inc, user_before)
            raise ValueError("Reserve would become negative")

        self._reserve_doc["version"] = int(self._reserve_doc.get("version") or 0) + 1
        self._undo.append((self._user_doc, dict(user_inc), user_before))
        self._undo.append((self._reserve_doc, dict(reserve_inc), reserve_before))

    def rollback(self) -> None:
        for doc, inc, before in reversed(self._undo):
            self._revert(doc, inc, before)
        if self._undo:
            self._reserve_doc["version"] = int(self._reserve_doc.get("version") or 0) + 1
        self._undo.clear()

    @staticmethod
    def _revert(doc: dict, inc: Mapping[str, float], before: Mapping[str, Any]) -> None:
        # deltas are subtracted, so increments made by others in between are kept
        for path, delta in inc.items():
            _set_path(doc, path, (_get_path(doc, path) or 0) - delta)
        for path, value in before.items():
            _set_path(doc, path, value)


class MemoryStore:
    """
    Dict-backed implementation of every repository protocol.

    One ``asyncio.Lock`` serialises exchanges against the reserve; user
    updates outside an exchange are atomic because they never await
    between check and write.
    """

    def __init__(self):
        self.users: Dict[int, dict] = {}
        self.reserve: Optional[dict] = None
        self.exchange_history: List[ExchangeRecord] = []
        self.miner_rewards: List[MinerRewardRecord] = []
        self._exchange_lock = asyncio.Lock()
        self._next_id: Dict[str, int] = defaultdict(int)

        self.exchanges = _ExchangeLedger(self)
        self.rewards = _MinerRewardLedger(self)

    # ---- users ----

    async def get_user(self, user_id: int) -> Optional[User]:
        doc = self.users.get(int(user_id))
        return User.from_document(doc) if doc else None

    async def create_user(self, user: User) -> User:
        if user.id not in self.users:
            self.users[user.id] = user.to_document()
        return User.from_document(self.users[user.id])

    async def update_user(
        self,
        user_id: int,
        *,
        inc: Optional[Mapping[str, float]] = None,
        set_: Optional[Mapping[str, Any]] = None,
        expect: Optional[Mapping[str, Any]] = None,
        floor: Iterable[str] = (),
    ) -> bool:
        doc = self._user_doc(user_id)
        if doc is None:
            validate_paths(list(inc or {}) + list(set_ or {}) + list(expect or {}) + list(floor), USER_COLUMNS)
            return False
        return apply_update(doc, USER_COLUMNS, inc=inc, set_=set_, expect=expect, floor=floor)

    def _user_doc(self, user_id: int) -> Optional[dict]:
        doc = self.users.get(int(user_id))
        return normalize_user_doc(doc) if doc is not None else None

    async def get_users(self, user_ids: Iterable[int]) -> List[User]:
        return [User.from_document(self.users[i]) for i in user_ids if i in self.users]

    async def get_active_miners(self) -> List[User]:
        return [
            User.from_document(doc)
            for _, doc in sorted(self.users.items())
            if _get_path(doc, "miner.active")
        ]

    async def top_miners(self, limit: int) -> List[User]:
        miners = await self.get_active_miners()
        miners.sort(key=lambda u: u.miner.total_earned, reverse=True)
        return miners[:limit]

    async def miner_totals(self) -> MinerTotals:
        users = [User.from_document(doc) for doc in self.users.values()]
        if not users:
            return MinerTotals()
        return MinerTotals(
            total_active_miners=sum(1 for u in users if u.miner.active),
            total_miner_earnings=sum(u.miner.total_earned for u in users),
            avg_miner_level=sum(u.miner.level for u in users) / len(users),
            avg_miner_efficiency=sum(u.miner.efficiency for u in users) / len(users),
        )

    # ---- reserve ----

    async def get_reserve(self) -> Optional[Reserve]:
        return Reserve.from_document(self.reserve) if self.reserve else None

    async def ensure_reserve(self, magnum_coins: float, stars: float) -> Reserve:
        if self.reserve is None:
            self.reserve = Reserve(magnum_coins=magnum_coins, stars=stars).to_document()
            self.reserve["version"] = 0
            logger.info(f"Reserve created: {magnum_coins} magnumCoins / {stars} stars")
        return Reserve.from_document(self.reserve)

    # ---- exchange unit of work ----

    @asynccontextmanager
    async def open_exchange(self, user_id: int) -> AsyncIterator[MemoryExchangeUnit]:
        async with self._exchange_lock:
            unit = MemoryExchangeUnit(self._user_doc(user_id), self.reserve)
            try:
                yield unit
            except BaseException:
                unit.rollback()
                raise

    def _assign_id(self, kind: str) -> int:
        self._next_id[kind] += 1
        return self._next_id[kind]


class _ExchangeLedger:
    """ExchangeRepository view of a MemoryStore"""

    def __init__(self, store: MemoryStore):
        self.store = store

    def open_exchange(self, user_id: int):
        return self.store.open_exchange(user_id)

    async def insert(self, record: ExchangeRecord) -> None:
        record.id = self.store._assign_id("exchange")
        self.store.exchange_history.append(record)

    async def history(self, user_id: int, limit: int = 10) -> List[ExchangeRecord]:
        rows = [r for r in self.store.exchange_history if r.user_id == user_id]
        rows.sort(key=lambda r: (r.created_at, r.id or 0), reverse=True)
        return rows[:limit]

    async def stats(self) -> ExchangeStats:
        rows = self.store.exchange_history
        if not rows:
            return ExchangeStats()
        total_volume = sum(r.amount for r in rows)
        return ExchangeStats(
            total_exchanges=len(rows),
            total_volume=total_volume,
            total_commission=sum(r.commission for r in rows),
            avg_exchange_amount=total_volume / len(rows),
        )

    async def top_exchangers(self, limit: int = 10) -> List[TopExchanger]:
        grouped: Dict[int, List[ExchangeRecord]] = defaultdict(list)
        for r in self.store.exchange_history:
            grouped[r.user_id].append(r)

        result = []
        for user_id, rows in grouped.items():
            doc = self.store.users.get(user_id) or {}
            result.append(
                TopExchanger(
                    user_id=user_id,
                    username=doc.get("username") or "Unknown",
                    total_exchanges=len(rows),
                    total_volume=sum(r.amount for r in rows),
                    total_received=sum(r.received for r in rows),
                )
            )
        result.sort(key=lambda t: t.total_volume, reverse=True)
        return result[:limit]


class _MinerRewardLedger:
    """MinerRewardRepository view of a MemoryStore"""

    def __init__(self, store: MemoryStore):
        self.store = store

    async def insert(self, record: MinerRewardRecord) -> None:
        record.id = self.store._assign_id("reward")
        self.store.miner_rewards.append(record)

    async def history(self, user_id: int, limit: int = 10) -> List[MinerRewardRecord]:
        rows = [r for r in self.store.miner_rewards if r.user_id == user_id]
        rows.sort(key=lambda r: (r.created_at, r.id or 0), reverse=True)
        return rows[:limit]
