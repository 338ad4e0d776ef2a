# tests/conftest.py
from datetime import datetime, timedelta

import pytest

from magnum.database.memory_store import MemoryStore
from magnum.database.models import MinerState, Reserve, User
from magnum.services.exchange_service import ExchangeEngine
from magnum.services.logging_service import AdminLogger
from magnum.services.miner_service import MinerEngine
from magnum.services.notification_service import NotificationDispatcher
from magnum.services.user_cache import UserCache
from magnum.services.user_service import UserService
from magnum.utils.config import Config

NOW = 1_700_000_000
ADMIN_CHAT_ID = 42


class FakeClock:
    """Callable clock returning unix seconds that tests move by hand"""

    def __init__(self, now: float = NOW):
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeUtcClock:
    """datetime clock for the admin logger rate limiter"""

    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


class CapturingNotifier:
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)
        self.closed = False

    async def send_message(self, chat_id: int, text: str) -> bool:
        if chat_id in self.fail_for:
            raise RuntimeError(f"chat {chat_id} unreachable")
        self.sent.append((chat_id, text))
        return True

    async def close(self) -> None:
        self.closed = True

    def texts_for(self, chat_id: int):
        return [text for cid, text in self.sent if cid == chat_id]


def add_user(store: MemoryStore, user_id: int, **fields) -> User:
    miner = fields.pop("miner", None) or MinerState()
    user = User(id=user_id, miner=miner, created=NOW - 86400, last_seen=NOW - 86400, **fields)
    store.users[user_id] = user.to_document()
    return user


def set_reserve(store: MemoryStore, magnum_coins: float, stars: float):
    store.reserve = Reserve(magnum_coins=magnum_coins, stars=stars).to_document()
    store.reserve["version"] = 0


@pytest.fixture
def config():
    return Config(
        admin_chat_id=ADMIN_CHAT_ID,
        storage_timeout=5,
        user_cache_ttl=300,
        exchange_min_amount=1,
        initial_reserve_magnum_coins=1_000_000,
        initial_reserve_stars=1_000_000,
        new_user_stars=100,
        new_user_magnum_coins=0,
        miner_reward_per_hour=0.1,
        miner_upgrade_cost=1000,
        miner_efficiency_step=0.1,
        miner_process_interval=1800,
        miner_notifications=True,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    store = MemoryStore()
    set_reserve(store, 1_000_000, 1_000_000)
    return store


@pytest.fixture
def cache(store, clock):
    return UserCache(store, ttl_seconds=300, clock=clock)


@pytest.fixture
def admin_notifier():
    return CapturingNotifier()


@pytest.fixture
def admin_logger(admin_notifier):
    return AdminLogger(admin_notifier, ADMIN_CHAT_ID, clock=FakeUtcClock())


@pytest.fixture
def notifier():
    return CapturingNotifier()


@pytest.fixture
def dispatcher(notifier):
    return NotificationDispatcher(notifier)


@pytest.fixture
def exchange(store, cache, config, admin_logger, clock):
    return ExchangeEngine(store, store, store.exchanges, cache, config, admin_logger=admin_logger, clock=clock)


@pytest.fixture
def miner(store, cache, config, dispatcher, admin_logger, clock):
    return MinerEngine(
        store, store.rewards, cache, config, dispatcher=dispatcher, admin_logger=admin_logger, clock=clock
    )


@pytest.fixture
def user_service(store, cache, config, clock):
    return UserService(store, cache, config, clock=clock)
