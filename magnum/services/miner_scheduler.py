# magnum/services/miner_scheduler.py
import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class MinerScheduler:
    """
    Runs the miner accrual pass right away and then every ``interval_s``
    seconds. A failed pass is logged; the loop keeps going.
    """

    def __init__(self, miner_engine, interval_s: float, cache=None):
        self.miner_engine = miner_engine
        self.interval_s = float(interval_s)
        self.cache = cache
        self.runs = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        if self.interval_s <= 0:
            logger.warning("[Miner] MINER_PROCESS_INTERVAL <= 0; scheduler disabled.")
            return
        if self._task:
            return
        self._task = asyncio.create_task(self._runner(), name="miner-rewards-loop")
        logger.info(f"[Miner] Scheduler started, interval {self.interval_s:.0f}s")

    async def stop(self):
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("[Miner] Scheduler stopped")

    async def run_once(self) -> dict:
        summary = await self.miner_engine.process_miner_rewards()
        self.runs += 1
        if self.cache is not None:
            self.cache.cleanup()
        return summary

    async def _runner(self):
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("[Miner] rewards pass failed: %s", e)
            await asyncio.sleep(self.interval_s)
