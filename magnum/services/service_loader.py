# magnum/services/service_loader.py
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..database.database_service import DatabaseService
from ..utils.config import Config
from .exchange_service import COMMISSION_RATE, ExchangeEngine
from .logging_service import AdminLogger, LogLevel
from .miner_scheduler import MinerScheduler
from .miner_service import MinerEngine
from .notification_service import LogNotifier, NotificationDispatcher, TelegramNotifier
from .user_cache import UserCache
from .user_service import UserService

logger = logging.getLogger(__name__)


@dataclass
class EconomyServices:
    config: Config
    cache: UserCache
    users: UserService
    exchange: ExchangeEngine
    miner: MinerEngine
    scheduler: MinerScheduler
    dispatcher: NotificationDispatcher
    admin_logger: AdminLogger
    database: Optional[DatabaseService] = None

    async def start(self):
        await self.dispatcher.start()
        await self.scheduler.start()

    async def stop(self):
        await self.scheduler.stop()
        await self.exchange.drain()
        await self.dispatcher.stop()
        if self.database:
            await self.database.close()


def build_notifier(config: Config):
    if config.bot_token:
        return TelegramNotifier(config.bot_token)
    logger.info("TELEGRAM_BOT_TOKEN not set - notifications will only be logged")
    return LogNotifier()


def build_services(
    config: Config,
    *,
    users,
    reserve,
    exchanges,
    rewards,
    notifier=None,
    admin_logger: Optional[AdminLogger] = None,
    database: Optional[DatabaseService] = None,
) -> EconomyServices:
    """Wire the economy core over any storage implementing the repository contracts"""
    notifier = notifier or build_notifier(config)
    dispatcher = NotificationDispatcher(notifier)
    admin_logger = admin_logger or AdminLogger(notifier, config.admin_chat_id)
    cache = UserCache(users, ttl_seconds=config.user_cache_ttl)

    exchange = ExchangeEngine(users, reserve, exchanges, cache, config, admin_logger=admin_logger)
    miner = MinerEngine(users, rewards, cache, config, dispatcher=dispatcher, admin_logger=admin_logger)
    scheduler = MinerScheduler(miner, config.miner_process_interval, cache=cache)

    return EconomyServices(
        config=config,
        cache=cache,
        users=UserService(users, cache, config),
        exchange=exchange,
        miner=miner,
        scheduler=scheduler,
        dispatcher=dispatcher,
        admin_logger=admin_logger,
        database=database,
    )


async def init_core_services(config: Config) -> EconomyServices:
    """Initialize the database and the economy core with logging"""
    started = datetime.utcnow()
    logger.info("Starting core services initialization...")

    notifier = build_notifier(config)
    database = DatabaseService(config)
    admin_logger = AdminLogger(notifier, config.admin_chat_id)
    database.set_logger(admin_logger)

    try:
        logger.info("Initializing database service...")
        t0 = datetime.utcnow()
        await database.initialize()
        db_init_time = (datetime.utcnow() - t0).total_seconds()
        logger.info(f"Database service initialized in {db_init_time:.2f}s")
    except Exception as e:
        logger.error(f"Failed to initialize database service: {e}")
        await notifier.close()
        raise

    services = build_services(
        config,
        users=database.users,
        reserve=database.reserves,
        exchanges=database.exchanges,
        rewards=database.miner_rewards,
        notifier=notifier,
        admin_logger=admin_logger,
        database=database,
    )

    total_init_time = (datetime.utcnow() - started).total_seconds()
    logger.info(f"Core services initialization completed in {total_init_time:.2f}s")

    try:
        await services.admin_logger.log_custom(
            service="Service Loader",
            title="Core Services Initialized",
            description="Economy core started successfully",
            level=LogLevel.SUCCESS,
            fields={
                "Database": f"✅ Ready ({db_init_time:.2f}s)",
                "Exchange Commission": f"{COMMISSION_RATE * 100:g}%",
                "Miner Interval": f"{config.miner_process_interval:.0f}s",
                "Notifications": "Telegram" if config.bot_token else "Log only",
                "Total Init Time": f"{total_init_time:.2f}s",
                "Status": "🟢 All systems operational",
            },
        )
    except Exception as e:
        logger.warning(f"Failed to log core services initialization: {e}")

    return services
