"""
magnum/services/exchange_service.py
Dual-currency exchange against the shared reserve.

Rates come from the reserve ratio. The full read-validate-write of an exchange
runs inside ``open_exchange``, so the rate and the liquidity check always use
the locked reserve snapshot.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional, Set, TypeVar

from ..database.models import ExchangeRecord, ExchangeStats, Reserve
from ..utils.config import Config
from .errors import (
    EconomyError,
    InsufficientFundsError,
    InsufficientReserveError,
    InternalError,
    MinimumAmountError,
    ReserveUnavailable,
    UnsupportedPairError,
    UserNotFoundError,
)
from .results import Result
from .user_cache import UserCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fixed for both directions
COMMISSION_RATE = 0.025


class Currency(str, Enum):
    MAGNUM_COINS = "magnumCoins"
    STARS = "stars"

    @property
    def symbol(self) -> str:
        return "🪙" if self is Currency.MAGNUM_COINS else "⭐"

    @property
    def earned_field(self) -> str:
        return "totalEarnedMagnumCoins" if self is Currency.MAGNUM_COINS else "totalEarnedStars"


class ExchangeDirection(str, Enum):
    MAGNUM_TO_STARS = "magnumToStars"
    STARS_TO_MAGNUM = "starsToMagnum"

    @property
    def source(self) -> Currency:
        return Currency.MAGNUM_COINS if self is ExchangeDirection.MAGNUM_TO_STARS else Currency.STARS

    @property
    def target(self) -> Currency:
        return Currency.STARS if self is ExchangeDirection.MAGNUM_TO_STARS else Currency.MAGNUM_COINS

    @property
    def ledger_type(self) -> str:
        return "magnum_to_stars" if self is ExchangeDirection.MAGNUM_TO_STARS else "stars_to_magnum"

    @classmethod
    def parse(cls, value) -> "ExchangeDirection":
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedPairError() from None

    @classmethod
    def from_pair(cls, from_currency, to_currency) -> "ExchangeDirection":
        pair = (str(getattr(from_currency, "value", from_currency)), str(getattr(to_currency, "value", to_currency)))
        if pair == (Currency.MAGNUM_COINS.value, Currency.STARS.value):
            return cls.MAGNUM_TO_STARS
        if pair == (Currency.STARS.value, Currency.MAGNUM_COINS.value):
            return cls.STARS_TO_MAGNUM
        raise UnsupportedPairError()


@dataclass
class ExchangeQuote:
    direction: ExchangeDirection
    amount: float
    commission: float
    net_amount: float
    rate: float
    received: float

    def to_dict(self) -> dict:
        return {
            "amount": self.amount,
            "received": self.received,
            "commission": self.commission,
            "rate": self.rate,
            "netAmount": self.net_amount,
        }


def rate_for(reserve: Optional[Reserve], direction: ExchangeDirection) -> float:
    if reserve is None or not reserve.is_liquid:
        raise ReserveUnavailable()
    if direction is ExchangeDirection.MAGNUM_TO_STARS:
        return reserve.magnum_to_stars
    return reserve.stars_to_magnum


def quote_exchange(
    reserve: Optional[Reserve], direction: ExchangeDirection, amount: float, commission_rate: float
) -> ExchangeQuote:
    """received = (amount - amount * commission_rate) * reserve ratio; no state is touched"""
    rate = rate_for(reserve, direction)
    commission = amount * commission_rate
    net_amount = amount - commission
    return ExchangeQuote(
        direction=direction,
        amount=amount,
        commission=commission,
        net_amount=net_amount,
        rate=rate,
        received=net_amount * rate,
    )


def _fmt(value: float) -> str:
    return f"{value:.4f}"


class ExchangeEngine:
    def __init__(
        self,
        users,
        reserve,
        exchanges,
        cache: UserCache,
        config: Config,
        admin_logger=None,
        clock: Callable[[], float] = time.time,
    ):
        self.users = users
        self.reserve = reserve
        self.exchanges = exchanges
        self.cache = cache
        self.config = config
        self.admin_logger = admin_logger
        self._clock = clock
        self._background: Set[asyncio.Task] = set()

    @property
    def commission_rate(self) -> float:
        return COMMISSION_RATE

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.config.storage_timeout)

    # ---------- Rates ----------

    async def get_exchange_rates(self) -> Result:
        try:
            reserve = await self._call(self.reserve.get_reserve())
            if reserve is None or not reserve.is_liquid:
                raise ReserveUnavailable()
            return Result.ok(
                magnumToStars=reserve.magnum_to_stars,
                starsToMagnum=reserve.stars_to_magnum,
                reserve=reserve.to_document(),
            )
        except EconomyError as e:
            return Result.fail(e)
        except Exception as e:
            logger.exception(f"Failed to read exchange rates: {e}")
            return Result.fail(InternalError())

    async def calculate_exchange_amount(self, from_currency, to_currency, amount: float) -> Result:
        """Preview of what ``exchange`` would pay under the current reserve"""
        try:
            direction = ExchangeDirection.from_pair(from_currency, to_currency)
            reserve = await self._call(self.reserve.get_reserve())
            quote = quote_exchange(reserve, direction, float(amount), self.commission_rate)
            return Result.ok(**quote.to_dict())
        except EconomyError as e:
            return Result.fail(e)
        except Exception as e:
            logger.exception(f"Failed to calculate exchange amount: {e}")
            return Result.fail(InternalError())

    # ---------- Exchange ----------

    async def exchange(self, user_id: int, direction, amount: float) -> Result:
        try:
            direction = ExchangeDirection.parse(direction)
            amount = float(amount)
            if not amount >= self.config.exchange_min_amount:
                raise MinimumAmountError(
                    f"Minimum exchange amount is {self.config.exchange_min_amount:g}{direction.source.symbol}"
                )

            await self._precheck(user_id, direction, amount)

            quote = await self._call(self._execute(user_id, direction, amount))
        except EconomyError as e:
            logger.info(f"Exchange rejected for user {user_id}: {e.code}")
            return Result.fail(e)
        except asyncio.TimeoutError:
            logger.error(f"Exchange for user {user_id} timed out")
            return Result.fail(InternalError())
        except Exception as e:
            logger.exception(f"Exchange failed for user {user_id}: {e}")
            return Result.fail(InternalError())

        self.cache.invalidate(user_id)
        await self._log_exchange(user_id, quote)

        logger.info(
            f"User {user_id} exchanged {_fmt(amount)} {direction.source.value} -> "
            f"{_fmt(quote.received)} {direction.target.value} (commission {_fmt(quote.commission)})"
        )
        src, dst = direction.source.symbol, direction.target.symbol
        message = (
            "✅ Exchange completed!\n\n"
            f"💱 Exchanged: {_fmt(amount)}{src}\n"
            f"{dst} Received: {_fmt(quote.received)}{dst}\n"
            f"💰 Commission: {_fmt(quote.commission)}{src}\n"
            f"📊 Rate: 1{src} = {_fmt(quote.rate)}{dst}"
        )
        return Result.ok(
            message,
            amount=amount,
            received=quote.received,
            commission=quote.commission,
            rate=quote.rate,
            direction=direction.value,
        )

    async def _precheck(self, user_id: int, direction: ExchangeDirection, amount: float):
        """Fail fast without the lock; a cached shortfall is confirmed against the store"""
        user = await self._call(self.cache.get_user(user_id))
        if user is not None and user.balance(direction.source.value) < amount:
            user = await self._call(self.users.get_user(user_id))
            if user is not None:
                self.cache.invalidate(user_id)
        if user is None:
            raise UserNotFoundError()
        if user.balance(direction.source.value) < amount:
            raise self._insufficient_funds(direction)

    def _insufficient_funds(self, direction: ExchangeDirection) -> InsufficientFundsError:
        name = "Magnum Coins" if direction.source is Currency.MAGNUM_COINS else "stars"
        return InsufficientFundsError(f"Not enough {name} to exchange")

    async def _execute(self, user_id: int, direction: ExchangeDirection, amount: float) -> ExchangeQuote:
        source, target = direction.source.value, direction.target.value
        async with self.exchanges.open_exchange(user_id) as unit:
            user = unit.user
            if user is None:
                raise UserNotFoundError()
            if user.balance(source) < amount:
                raise self._insufficient_funds(direction)

            quote = quote_exchange(unit.reserve, direction, amount, self.commission_rate)
            if unit.reserve.balance(target) < quote.received:
                raise InsufficientReserveError(
                    f"Not enough {'stars' if target == 'stars' else 'Magnum Coins'} in the exchange reserve"
                )

            now = self._clock()
            await unit.apply(
                user_inc={
                    source: -amount,
                    target: quote.received,
                    direction.target.earned_field: quote.received,
                    "statistics.totalExchanges": 1,
                },
                user_set={"lastSeen": int(now)},
                reserve_inc={
                    source: amount,
                    target: -quote.received,
                    "totalExchanges": 1,
                    "totalVolume": amount,
                },
                reserve_set={"lastUpdated": datetime.fromtimestamp(now, timezone.utc)},
            )
        return quote

    async def _log_exchange(self, user_id: int, quote: ExchangeQuote):
        record = ExchangeRecord(
            user_id=int(user_id),
            type=quote.direction.ledger_type,
            amount=quote.amount,
            received=quote.received,
            commission=quote.commission,
            created_at=datetime.fromtimestamp(self._clock(), timezone.utc),
        )
        try:
            await self._call(self.exchanges.insert(record))
        except Exception as e:
            logger.error(f"Failed to append exchange history for user {user_id}: {e}")
            if self.admin_logger:
                task = asyncio.create_task(
                    self.admin_logger.log_ledger_failure("exchange_history", record.to_document(), e)
                )
                self._background.add(task)
                task.add_done_callback(self._background.discard)

    async def drain(self):
        """Wait for pending admin alerts"""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ---------- Reporting ----------

    async def get_exchange_history(self, user_id: int, limit: int = 10) -> list:
        try:
            records = await self._call(self.exchanges.history(int(user_id), limit))
            return [r.to_document() for r in records]
        except Exception as e:
            logger.error(f"Failed to read exchange history for user {user_id}: {e}")
            return []

    async def get_exchange_stats(self) -> dict:
        try:
            stats = await self._call(self.exchanges.stats())
            return stats.to_dict()
        except Exception as e:
            logger.error(f"Failed to read exchange stats: {e}")
            return ExchangeStats().to_dict()

    async def get_top_exchangers(self, limit: int = 10) -> list:
        try:
            top = await self._call(self.exchanges.top_exchangers(limit))
            return [t.to_dict() for t in top]
        except Exception as e:
            logger.error(f"Failed to read top exchangers: {e}")
            return []

    async def get_reserve_info(self) -> Result:
        try:
            reserve = await self._call(self.reserve.get_reserve())
            if reserve is None or not reserve.is_liquid:
                raise ReserveUnavailable()
            return Result.ok(
                magnumCoins=reserve.magnum_coins,
                stars=reserve.stars,
                totalExchanges=reserve.total_exchanges,
                totalVolume=reserve.total_volume,
                lastUpdated=reserve.last_updated,
                rates={
                    "magnumToStars": reserve.magnum_to_stars,
                    "starsToMagnum": reserve.stars_to_magnum,
                },
            )
        except EconomyError as e:
            return Result.fail(e)
        except Exception as e:
            logger.exception(f"Failed to read reserve info: {e}")
            return Result.fail(InternalError())
