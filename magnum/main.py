"""
magnum/main.py
Boots the economy core and runs the miner accrual schedule until SIGINT/SIGTERM
"""
import asyncio
import logging
import signal
import sys

from magnum.services.logging_service import LogLevel
from magnum.services.service_loader import init_core_services
from magnum.utils.config import Config
from magnum.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


async def main():
    """Main entry point"""
    config = Config()
    setup_logging(config.log_level, config.log_file)

    missing_config = config.validate()
    if missing_config:
        logger.error(f"Missing critical configuration: {', '.join(missing_config)}")
        return

    logger.info("=" * 60)
    logger.info("Starting Magnum Stars economy core...")
    logger.info(f"Database: {config.db_host}:{config.db_port}/{config.db_name}")
    logger.info(f"Admin chat: {config.admin_chat_id or 'disabled'}")
    logger.info(f"Miner interval: {config.miner_process_interval:.0f}s")
    logger.info("=" * 60)

    services = await init_core_services(config)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows: KeyboardInterrupt still reaches asyncio.run
            pass

    try:
        await services.start()
        await stop_event.wait()
        logger.info("Shutdown signal received")
    finally:
        await services.admin_logger.log_custom(
            service="Economy Core",
            title="Shutting Down",
            description="Magnum Stars economy core is shutting down",
            level=LogLevel.WARNING,
            fields={
                "Miner Passes": str(services.scheduler.runs),
                "Cache": str(services.cache.stats()),
                "Reason": "Graceful shutdown",
            },
        )
        await services.stop()
        logger.info("Shutdown complete")


def run():
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested via keyboard interrupt")


if __name__ == "__main__":
    run()
