"""
magnum/database/repositories.py
Storage contracts consumed by the economy engines.

Updates are expressed with document paths (``"stars"``, ``"miner.lastReward"``,
``"statistics.totalExchanges"``) so that callers never see the storage layout.
Implementations live in ``queries/`` (Postgres) and ``memory_store.py``.
"""

from __future__ import annotations

from typing import (
    Any,
    AsyncContextManager,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
)

from .models import (
    ExchangeRecord,
    ExchangeStats,
    MinerRewardRecord,
    MinerTotals,
    Reserve,
    TopExchanger,
    User,
)


class UserRepository(Protocol):
    async def get_user(self, user_id: int) -> Optional[User]:
        """Return the user with the given ID, or None if not found."""
        ...

    async def create_user(self, user: User) -> User:
        """Insert the user if absent and return whatever is stored."""
        ...

    async def update_user(
        self,
        user_id: int,
        *,
        inc: Optional[Mapping[str, float]] = None,
        set_: Optional[Mapping[str, Any]] = None,
        expect: Optional[Mapping[str, Any]] = None,
        floor: Iterable[str] = (),
    ) -> bool:
        """
        Apply one atomic conditional write.

        The write happens only if every ``expect`` path currently equals the
        given value and every ``floor`` path stays >= 0 after ``inc`` is added.
        Returns True when a row was written.
        """
        ...

    async def get_users(self, user_ids: Iterable[int]) -> List[User]:
        ...

    async def get_active_miners(self) -> List[User]:
        ...

    async def top_miners(self, limit: int) -> List[User]:
        """Active miners ordered by lifetime miner earnings, highest first."""
        ...

    async def miner_totals(self) -> MinerTotals:
        ...


class ReserveRepository(Protocol):
    async def get_reserve(self) -> Optional[Reserve]:
        ...

    async def ensure_reserve(self, magnum_coins: float, stars: float) -> Reserve:
        """Create the singleton reserve if it does not exist yet."""
        ...


class ExchangeUnit(Protocol):
    """
    Locked snapshot of one user and the reserve.

    Obtained from ``ExchangeRepository.open_exchange``; no other exchange can
    touch the reserve until the owning context exits.
    """

    user: Optional[User]
    reserve: Optional[Reserve]

    async def apply(
        self,
        *,
        user_inc: Mapping[str, float],
        user_set: Mapping[str, Any],
        reserve_inc: Mapping[str, float],
        reserve_set: Mapping[str, Any],
    ) -> None:
        ...


class ExchangeRepository(Protocol):
    def open_exchange(self, user_id: int) -> AsyncContextManager[ExchangeUnit]:
        """Commit on normal exit, roll back if the block raises."""
        ...

    async def insert(self, record: ExchangeRecord) -> None:
        ...

    async def history(self, user_id: int, limit: int) -> List[ExchangeRecord]:
        ...

    async def stats(self) -> ExchangeStats:
        ...

    async def top_exchangers(self, limit: int) -> List[TopExchanger]:
        ...


class MinerRewardRepository(Protocol):
    async def insert(self, record: MinerRewardRecord) -> None:
        ...

    async def history(self, user_id: int, limit: int) -> List[MinerRewardRecord]:
        ...


def validate_paths(paths: Iterable[str], allowed: Dict[str, str]) -> None:
    unknown = [p for p in paths if p not in allowed]
    if unknown:
        raise ValueError(f"Unknown field path(s): {', '.join(sorted(unknown))}")
