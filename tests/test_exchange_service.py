# tests/test_exchange_service.py
import asyncio
from contextlib import asynccontextmanager

import pytest

from magnum.services.exchange_service import (
    COMMISSION_RATE,
    Currency,
    ExchangeDirection,
    ExchangeEngine,
    quote_exchange,
)
from magnum.database.memory_store import MemoryStore
from magnum.database.models import Reserve
from magnum.services.user_cache import UserCache
from magnum.utils.config import Config
from tests.conftest import ADMIN_CHAT_ID, NOW, add_user, set_reserve


def totals(store, currency):
    return sum(doc[currency] for doc in store.users.values()) + store.reserve[currency]


class _HeldUnit:
    """Exchange unit whose write waits until the test releases it"""

    def __init__(self, unit, entered: asyncio.Event, release: asyncio.Event):
        self._unit = unit
        self._entered = entered
        self._release = release
        self.user = unit.user
        self.reserve = unit.reserve

    async def apply(self, **changes):
        self._entered.set()
        await self._release.wait()
        await self._unit.apply(**changes)


class HeldStore(MemoryStore):
    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    @asynccontextmanager
    async def open_exchange(self, user_id: int):
        async with super().open_exchange(user_id) as unit:
            yield _HeldUnit(unit, self.entered, self.release)


@pytest.mark.asyncio
async def test_exchange_magnum_to_stars_scenario(store, exchange):
    add_user(store, 1, magnum_coins=1000, stars=5)

    result = await exchange.exchange(1, "magnumToStars", 100)

    assert result.success, result.message
    assert result["commission"] == pytest.approx(2.5)
    assert result["rate"] == pytest.approx(1.0)
    assert result["received"] == pytest.approx(97.5)
    assert result["direction"] == "magnumToStars"
    assert "Exchange completed" in result.message

    user = store.users[1]
    assert user["magnumCoins"] == pytest.approx(900)
    assert user["stars"] == pytest.approx(102.5)
    assert user["totalEarnedStars"] == pytest.approx(97.5)
    assert user["statistics"]["totalExchanges"] == 1
    assert user["lastSeen"] == NOW

    assert store.reserve["magnumCoins"] == pytest.approx(1_000_100)
    assert store.reserve["stars"] == pytest.approx(999_902.5)
    assert store.reserve["totalExchanges"] == 1
    assert store.reserve["totalVolume"] == pytest.approx(100)
    assert store.reserve["version"] == 1

    [record] = store.exchange_history
    assert record.user_id == 1
    assert record.type == "magnum_to_stars"
    assert record.amount == pytest.approx(100)
    assert record.received == pytest.approx(97.5)
    assert record.commission == pytest.approx(2.5)


@pytest.mark.asyncio
async def test_exchange_stars_to_magnum_uses_reserve_ratio(store, exchange):
    set_reserve(store, 500_000, 1_000_000)
    add_user(store, 1, stars=200)

    result = await exchange.exchange(1, ExchangeDirection.STARS_TO_MAGNUM, 200)

    assert result.success
    assert result["rate"] == pytest.approx(0.5)
    assert result["received"] == pytest.approx(195 * 0.5)
    assert store.users[1]["stars"] == pytest.approx(0)
    assert store.users[1]["magnumCoins"] == pytest.approx(97.5)
    assert store.users[1]["totalEarnedMagnumCoins"] == pytest.approx(97.5)
    assert store.exchange_history[0].type == "stars_to_magnum"


@pytest.mark.asyncio
async def test_exchange_conserves_each_currency(store, exchange):
    add_user(store, 1, magnum_coins=1000, stars=300)
    add_user(store, 2, magnum_coins=50, stars=1000)
    before = {c: totals(store, c) for c in ("magnumCoins", "stars")}

    assert (await exchange.exchange(1, "magnumToStars", 333.3)).success
    assert (await exchange.exchange(2, "starsToMagnum", 777)).success
    assert (await exchange.exchange(1, "starsToMagnum", 10)).success

    for currency, total in before.items():
        assert totals(store, currency) == pytest.approx(total)


@pytest.mark.asyncio
async def test_quote_matches_executed_exchange(store, exchange):
    set_reserve(store, 750_000, 1_200_000)
    add_user(store, 1, magnum_coins=1000)

    quote = await exchange.calculate_exchange_amount("magnumCoins", "stars", 250)
    result = await exchange.exchange(1, "magnumToStars", 250)

    assert quote.success and result.success
    assert quote["received"] == pytest.approx(result["received"])
    assert quote["commission"] == pytest.approx(result["commission"])
    assert quote["netAmount"] == pytest.approx(243.75)


@pytest.mark.asyncio
async def test_calculate_does_not_touch_state(store, exchange):
    add_user(store, 1, magnum_coins=1000)
    reserve_before = dict(store.reserve)

    result = await exchange.calculate_exchange_amount(Currency.STARS, Currency.MAGNUM_COINS, 40)

    assert result.success
    assert store.reserve == reserve_before
    assert store.exchange_history == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "amount, error",
    [(0.5, "MinimumAmountError"), (0, "MinimumAmountError"), (-10, "MinimumAmountError"), (5000, "InsufficientFundsError")],
)
async def test_rejected_exchange_leaves_state_unchanged(store, exchange, amount, error):
    add_user(store, 1, magnum_coins=1000)
    user_before = dict(store.users[1])
    reserve_before = dict(store.reserve)

    result = await exchange.exchange(1, "magnumToStars", amount)

    assert not result.success
    assert result.error == error
    assert store.users[1] == user_before
    assert store.reserve == reserve_before
    assert store.exchange_history == []


@pytest.mark.asyncio
async def test_minimum_amount_message(store, exchange):
    add_user(store, 1, stars=10)

    result = await exchange.exchange(1, "starsToMagnum", 0.5)

    assert result.message == "Minimum exchange amount is 1⭐"


@pytest.mark.asyncio
async def test_insufficient_reserve(store, exchange):
    set_reserve(store, 10, 10)
    add_user(store, 1, magnum_coins=1000)

    result = await exchange.exchange(1, "magnumToStars", 100)

    assert result.error == "InsufficientReserveError"
    assert store.users[1]["magnumCoins"] == 1000
    assert store.reserve["stars"] == 10
    assert store.reserve["version"] == 0


@pytest.mark.asyncio
async def test_empty_reserve_side_is_unavailable(store, exchange):
    set_reserve(store, 1_000_000, 0)
    add_user(store, 1, magnum_coins=1000)

    result = await exchange.exchange(1, "magnumToStars", 100)
    rates = await exchange.get_exchange_rates()
    info = await exchange.get_reserve_info()

    assert result.error == "ReserveUnavailable"
    assert rates.error == "ReserveUnavailable"
    assert info.error == "ReserveUnavailable"
    assert store.users[1]["magnumCoins"] == 1000


@pytest.mark.asyncio
async def test_missing_reserve_is_unavailable(store, exchange):
    store.reserve = None

    result = await exchange.calculate_exchange_amount("magnumCoins", "stars", 10)

    assert result.error == "ReserveUnavailable"


@pytest.mark.asyncio
async def test_unsupported_pair(store, exchange):
    add_user(store, 1, magnum_coins=1000)

    same = await exchange.calculate_exchange_amount("stars", "stars", 10)
    unknown = await exchange.calculate_exchange_amount("gold", "stars", 10)
    bad_direction = await exchange.exchange(1, "goldToStars", 10)

    assert same.error == "UnsupportedPairError"
    assert unknown.error == "UnsupportedPairError"
    assert bad_direction.error == "UnsupportedPairError"


@pytest.mark.asyncio
async def test_unknown_user(exchange):
    result = await exchange.exchange(999, "magnumToStars", 10)

    assert result.error == "UserNotFoundError"


@pytest.mark.asyncio
async def test_concurrent_exchanges_never_overdraw(store, exchange):
    add_user(store, 1, magnum_coins=1000)

    results = await asyncio.gather(*(exchange.exchange(1, "magnumToStars", 100) for _ in range(20)))

    succeeded = [r for r in results if r.success]
    assert len(succeeded) == 10
    assert {r.error for r in results if not r.success} == {"InsufficientFundsError"}
    assert store.users[1]["magnumCoins"] == pytest.approx(0)
    assert store.users[1]["stars"] == pytest.approx(sum(r["received"] for r in succeeded))
    assert store.reserve["totalExchanges"] == 10
    assert len(store.exchange_history) == 10


@pytest.mark.asyncio
async def test_concurrent_users_share_reserve_consistently(store, exchange):
    add_user(store, 1, magnum_coins=1000)
    add_user(store, 2, stars=1000)
    before = {c: totals(store, c) for c in ("magnumCoins", "stars")}

    await asyncio.gather(
        *(exchange.exchange(1, "magnumToStars", 50) for _ in range(5)),
        *(exchange.exchange(2, "starsToMagnum", 50) for _ in range(5)),
    )

    assert store.reserve["totalExchanges"] == 10
    assert store.reserve["version"] == 10
    for currency, total in before.items():
        assert totals(store, currency) == pytest.approx(total)


@pytest.mark.asyncio
async def test_ledger_failure_keeps_exchange_and_alerts_admin(store, exchange, admin_notifier, monkeypatch):
    add_user(store, 1, magnum_coins=1000)

    async def broken_insert(record):
        raise ConnectionError("ledger down")

    monkeypatch.setattr(store.exchanges, "insert", broken_insert)

    result = await exchange.exchange(1, "magnumToStars", 100)

    assert result.success
    assert store.users[1]["magnumCoins"] == pytest.approx(900)
    await exchange.drain()
    [alert] = admin_notifier.texts_for(ADMIN_CHAT_ID)
    assert "Ledger Append Failed" in alert
    assert "ledger down" in alert


@pytest.mark.asyncio
async def test_storage_timeout_is_internal_error(store, cache, config, clock, monkeypatch):
    add_user(store, 1, magnum_coins=1000)
    config.storage_timeout = 0.01
    engine = ExchangeEngine(store, store, store.exchanges, cache, config, clock=clock)

    async def slow_get_user(user_id):
        await asyncio.sleep(1)

    monkeypatch.setattr(store, "get_user", slow_get_user)

    result = await engine.exchange(1, "magnumToStars", 100)

    assert result.error == "InternalError"
    assert store.users[1]["magnumCoins"] == 1000


@pytest.mark.asyncio
async def test_exchange_invalidates_cached_user(store, exchange, cache):
    add_user(store, 1, magnum_coins=1000)
    await cache.get_user(1)

    await exchange.exchange(1, "magnumToStars", 100)

    assert cache.get_cached(1) is None
    fresh = await cache.get_user(1)
    assert fresh.magnum_coins == pytest.approx(900)


@pytest.mark.asyncio
async def test_reporting(store, exchange, clock):
    add_user(store, 1, username="alice", magnum_coins=1000)
    add_user(store, 2, username="", stars=1000)

    await exchange.exchange(1, "magnumToStars", 100)
    clock.advance(60)
    await exchange.exchange(1, "magnumToStars", 200)
    await exchange.exchange(2, "starsToMagnum", 50)

    history = await exchange.get_exchange_history(1, limit=10)
    assert [h["amount"] for h in history] == [pytest.approx(200), pytest.approx(100)]
    assert history[0]["userId"] == 1

    stats = await exchange.get_exchange_stats()
    assert stats["totalExchanges"] == 3
    assert stats["totalVolume"] == pytest.approx(350)
    assert stats["totalCommission"] == pytest.approx(350 * 0.025)
    assert stats["avgExchangeAmount"] == pytest.approx(350 / 3)

    top = await exchange.get_top_exchangers(limit=5)
    assert [t["userId"] for t in top] == [1, 2]
    assert top[0]["username"] == "alice"
    assert top[1]["username"] == "Unknown"
    assert top[0]["totalExchanges"] == 2

    info = await exchange.get_reserve_info()
    assert info.success
    assert info["totalExchanges"] == 3
    assert set(info["rates"]) == {"magnumToStars", "starsToMagnum"}


@pytest.mark.asyncio
async def test_exchange_stats_empty_ledger(exchange):
    stats = await exchange.get_exchange_stats()

    assert stats == {"totalExchanges": 0, "totalVolume": 0.0, "totalCommission": 0.0, "avgExchangeAmount": 0.0}


def test_quote_formula():
    reserve = Reserve(magnum_coins=2_000_000, stars=1_000_000)

    quote = quote_exchange(reserve, ExchangeDirection.MAGNUM_TO_STARS, 1000, 0.025)

    assert quote.commission == pytest.approx(25)
    assert quote.net_amount == pytest.approx(975)
    assert quote.rate == pytest.approx(0.5)
    assert quote.received == pytest.approx(487.5)


def test_direction_from_pair():
    assert ExchangeDirection.from_pair(Currency.MAGNUM_COINS, Currency.STARS) is ExchangeDirection.MAGNUM_TO_STARS
    assert ExchangeDirection.from_pair("stars", "magnumCoins") is ExchangeDirection.STARS_TO_MAGNUM
    assert ExchangeDirection.STARS_TO_MAGNUM.source is Currency.STARS
    assert ExchangeDirection.STARS_TO_MAGNUM.target.earned_field == "totalEarnedMagnumCoins"


@pytest.mark.asyncio
async def test_second_exchange_is_priced_after_the_first_commits(config, clock):
    store = HeldStore()
    set_reserve(store, 100, 100)
    add_user(store, 1, magnum_coins=95)
    add_user(store, 2, magnum_coins=95)
    engine = ExchangeEngine(store, store, store.exchanges, UserCache(store, clock=clock), config, clock=clock)

    first = asyncio.create_task(engine.exchange(1, "magnumToStars", 95))
    await store.entered.wait()
    second = asyncio.create_task(engine.exchange(2, "magnumToStars", 95))
    for _ in range(5):
        await asyncio.sleep(0)
    store.release.set()
    r1, r2 = await asyncio.gather(first, second)

    assert r1.success and r2.success, (r1.message, r2.message)
    assert r1["received"] == pytest.approx(92.625)
    after_first = Reserve(magnum_coins=195, stars=100 - 92.625)
    expected = quote_exchange(after_first, ExchangeDirection.MAGNUM_TO_STARS, 95, COMMISSION_RATE)
    assert r2["received"] == pytest.approx(expected.received)
    assert r2["rate"] == pytest.approx(expected.rate)
    assert store.reserve["stars"] >= 0
    assert store.reserve["stars"] == pytest.approx(100 - r1["received"] - r2["received"])
    assert store.reserve["magnumCoins"] == pytest.approx(290)
    assert store.reserve["version"] == 2


@pytest.mark.asyncio
async def test_cached_shortfall_is_checked_against_the_store(store, exchange, cache):
    add_user(store, 1, magnum_coins=50)
    await cache.get_user(1)
    # credited by a writer that does not share this cache
    store.users[1]["magnumCoins"] = 500

    result = await exchange.exchange(1, "magnumToStars", 100)

    assert result.success, result.message
    assert store.users[1]["magnumCoins"] == pytest.approx(400)


@pytest.mark.asyncio
async def test_cache_is_invalidated_before_the_ledger_append(store, exchange, cache, monkeypatch):
    add_user(store, 1, magnum_coins=1000)
    await cache.get_user(1)
    seen = []
    insert = store.exchanges.insert

    async def recording_insert(record):
        seen.append(cache.get_cached(1))
        await insert(record)

    monkeypatch.setattr(store.exchanges, "insert", recording_insert)

    await exchange.exchange(1, "magnumToStars", 100)

    assert seen == [None]


def test_commission_is_fixed(exchange):
    assert COMMISSION_RATE == 0.025
    assert exchange.commission_rate == COMMISSION_RATE
    assert not hasattr(Config(), "exchange_commission")
