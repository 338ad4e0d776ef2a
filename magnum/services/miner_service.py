"""
magnum/services/miner_service.py
Idle miners: state changes and the hourly accrual job.

Every write is a conditional update guarded on the miner state it was computed
from, so a payout can never be applied twice for the same hours.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar

from ..database.models import MinerRewardRecord, MinerTotals, User
from ..utils.config import Config
from .errors import (
    AlreadyActiveError,
    EconomyError,
    InsufficientFundsError,
    InternalError,
    NotActiveError,
    UserNotFoundError,
)
from .results import Result
from .user_cache import UserCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

SECONDS_PER_HOUR = 3600
CAS_ATTEMPTS = 3
LEADERBOARD_SIZE = 20


def hours_elapsed(last_reward: int, now: int) -> int:
    if last_reward <= 0 or now <= last_reward:
        return 0
    return int((now - last_reward) // SECONDS_PER_HOUR)


class MinerEngine:
    def __init__(
        self,
        users,
        rewards,
        cache: UserCache,
        config: Config,
        dispatcher=None,
        admin_logger=None,
        clock: Callable[[], float] = time.time,
    ):
        self.users = users
        self.rewards = rewards
        self.cache = cache
        self.config = config
        self.dispatcher = dispatcher
        self.admin_logger = admin_logger
        self._clock = clock
        self._job_lock = asyncio.Lock()
        self.last_run: Optional[dict] = None

    @property
    def base_reward_per_hour(self) -> float:
        return self.config.miner_reward_per_hour

    def efficiency_for(self, level: int) -> float:
        return 1.0 + (level - 1) * self.config.miner_efficiency_step

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.config.storage_timeout)

    async def _fresh_user(self, user_id: int) -> User:
        user = await self._call(self.users.get_user(user_id))
        if user is None:
            raise UserNotFoundError()
        return user

    async def _run(self, name: str, user_id: int, op: Callable[[], Awaitable[Result]]) -> Result:
        try:
            return await op()
        except EconomyError as e:
            logger.info(f"{name} rejected for user {user_id}: {e.code}")
            return Result.fail(e)
        except asyncio.TimeoutError:
            logger.error(f"{name} for user {user_id} timed out")
            return Result.fail(InternalError())
        except Exception as e:
            logger.exception(f"{name} failed for user {user_id}: {e}")
            return Result.fail(InternalError())

    # ---------- State changes ----------

    async def start_miner(self, user_id: int) -> Result:
        async def op():
            user = await self._fresh_user(user_id)
            if user.miner.active:
                raise AlreadyActiveError()

            now = int(self._clock())
            written = await self._call(
                self.users.update_user(
                    user_id,
                    set_={"miner.active": True, "miner.lastReward": now, "lastSeen": now},
                    expect={"miner.active": False},
                )
            )
            if not written:
                raise AlreadyActiveError()

            self.cache.invalidate(user_id)
            logger.info(f"Miner started for user {user_id}")
            return Result.ok(
                f"⛏️ Miner started! Rewards are credited every hour "
                f"({self.base_reward_per_hour * user.miner.efficiency:.4f}⭐/h).",
                active=True,
                lastReward=now,
            )

        return await self._run("Miner start", user_id, op)

    async def stop_miner(self, user_id: int) -> Result:
        """Stop the miner, paying the whole hours since the checkpoint"""

        async def op():
            for _ in range(CAS_ATTEMPTS):
                user = await self._fresh_user(user_id)
                if not user.miner.active:
                    raise NotActiveError()

                now = int(self._clock())
                last = user.miner.last_reward
                hours = hours_elapsed(last, now)
                reward = hours * self._rate(user)

                inc = {}
                if reward > 0:
                    inc = {"stars": reward, "miner.totalEarned": reward, "totalEarnedStars": reward}
                written = await self._call(
                    self.users.update_user(
                        user_id,
                        inc=inc,
                        set_={"miner.active": False, "miner.lastReward": now, "lastSeen": now},
                        expect={"miner.active": True, "miner.lastReward": last},
                    )
                )
                if not written:
                    continue

                self.cache.invalidate(user_id)
                if reward > 0:
                    await self._log_reward(user_id, reward, hours)
                logger.info(f"Miner stopped for user {user_id}, settled {hours}h = {reward:.4f} stars")
                message = "⛏️ Miner stopped!"
                if reward > 0:
                    message += f"\n💎 Settled: {reward:.4f}⭐ for {hours} hour(s)"
                return Result.ok(message, active=False, settledReward=reward, settledHours=hours)

            raise InternalError("Miner state changed concurrently, please try again")

        return await self._run("Miner stop", user_id, op)

    async def upgrade_miner(self, user_id: int) -> Result:
        cost = self.config.miner_upgrade_cost

        async def op():
            for _ in range(CAS_ATTEMPTS):
                user = await self._fresh_user(user_id)
                if user.stars < cost:
                    raise InsufficientFundsError(f"Not enough stars to upgrade! Required: {cost:g}⭐")

                level = user.miner.level or 1
                new_level = level + 1
                efficiency = self.efficiency_for(new_level)
                written = await self._call(
                    self.users.update_user(
                        user_id,
                        inc={"stars": -cost},
                        set_={
                            "miner.level": new_level,
                            "miner.efficiency": efficiency,
                            "lastSeen": int(self._clock()),
                        },
                        expect={"miner.level": level},
                        floor=["stars"],
                    )
                )
                if not written:
                    continue

                self.cache.invalidate(user_id)
                logger.info(f"Miner of user {user_id} upgraded to level {new_level}")
                return Result.ok(
                    f"⛏️ Miner upgraded to level {new_level}! Efficiency: +{(efficiency - 1) * 100:.0f}%",
                    level=new_level,
                    efficiency=efficiency,
                    cost=cost,
                )

            raise InternalError("Miner state changed concurrently, please try again")

        return await self._run("Miner upgrade", user_id, op)

    # ---------- Per-user view ----------

    async def get_miner_stats(self, user_id: int) -> Result:
        """
        Display projection. ``pendingReward`` uses the fixed base rate;
        ``effectiveRewardPerHour`` is what the accrual job will actually pay.
        """

        async def op():
            user = await self._call(self.cache.get_user(user_id))
            if user is None:
                raise UserNotFoundError()

            now = int(self._clock())
            miner = user.miner
            hours = hours_elapsed(miner.last_reward, now) if miner.active else 0
            return Result.ok(
                status="🟢 Active" if miner.active else "🔴 Inactive",
                isActive=miner.active,
                totalEarned=miner.total_earned,
                rewardPerHour=self.base_reward_per_hour,
                pendingReward=hours * self.base_reward_per_hour,
                hoursSinceLastReward=hours,
                level=miner.level,
                efficiency=miner.efficiency,
                effectiveRewardPerHour=self._rate(user),
            )

        return await self._run("Miner stats", user_id, op)

    def _rate(self, user: User) -> float:
        return self.base_reward_per_hour * (user.miner.efficiency or 1.0)

    # ---------- Accrual job ----------

    async def process_miner_rewards(self) -> dict:
        """
        Pay every active miner for the whole hours since its checkpoint.
        Single flight: a call made while a pass is running returns at once.
        """
        if self._job_lock.locked():
            logger.warning("Miner rewards pass already running, skipping this invocation")
            return {"skipped": True, "activeMiners": 0, "processedCount": 0, "totalRewards": 0.0, "errors": 0}

        async with self._job_lock:
            started = time.monotonic()
            now = int(self._clock())
            summary = {
                "skipped": False,
                "activeMiners": 0,
                "processedCount": 0,
                "conflicts": 0,
                "reanchored": 0,
                "totalRewards": 0.0,
                "errors": 0,
            }
            logger.info("Processing miner rewards...")

            try:
                miners = await self._call(self.users.get_active_miners())
            except Exception as e:
                logger.exception(f"Failed to load active miners: {e}")
                summary["errors"] += 1
                summary["durationSeconds"] = time.monotonic() - started
                if self.admin_logger:
                    await self.admin_logger.log_error("Miner", e, "Loading active miners failed")
                self.last_run = summary
                return summary

            summary["activeMiners"] = len(miners)
            logger.info(f"Found {len(miners)} active miners")

            for user in miners:
                try:
                    outcome = await self._pay_miner(user, now)
                except Exception as e:
                    summary["errors"] += 1
                    logger.exception(f"Miner payout failed for user {user.id}: {e}")
                    continue
                if outcome is None:
                    continue
                if outcome == "conflict":
                    summary["conflicts"] += 1
                elif outcome == "reanchored":
                    summary["reanchored"] += 1
                else:
                    summary["processedCount"] += 1
                    summary["totalRewards"] += outcome

            summary["durationSeconds"] = time.monotonic() - started
            logger.info(
                f"Miner rewards processed: {summary['processedCount']} paid, "
                f"{summary['totalRewards']:.4f} stars, {summary['errors']} errors"
            )
            if self.admin_logger and (summary["processedCount"] or summary["errors"]):
                await self.admin_logger.log_miner_batch(summary)
            self.last_run = summary
            return summary

    async def _pay_miner(self, user: User, now: int):
        """Returns the reward paid, "conflict", "reanchored" or None"""
        last = user.miner.last_reward
        guard = {"miner.active": True, "miner.lastReward": last}

        if last <= 0:
            written = await self._call(
                self.users.update_user(user.id, set_={"miner.lastReward": now}, expect=guard)
            )
            if written:
                self.cache.invalidate(user.id)
                logger.warning(f"Miner of user {user.id} had no checkpoint, anchored at {now}")
                return "reanchored"
            return "conflict"

        hours = hours_elapsed(last, now)
        if hours == 0:
            return None

        rate = self._rate(user)
        reward = hours * rate
        written = await self._call(
            self.users.update_user(
                user.id,
                inc={"stars": reward, "miner.totalEarned": reward, "totalEarnedStars": reward},
                set_={"miner.lastReward": now},
                expect=guard,
            )
        )
        if not written:
            logger.info(f"Miner of user {user.id} changed during the pass, payout skipped")
            return "conflict"

        self.cache.invalidate(user.id)
        logger.info(f"Miner {user.id}: {rate:.4f} stars/h, {hours}h = {reward:.4f} stars")
        await self._log_reward(user.id, reward, hours)
        self._notify(user, reward, hours, rate)
        return reward

    async def _log_reward(self, user_id: int, amount: float, hours: int):
        record = MinerRewardRecord(
            user_id=int(user_id),
            amount=amount,
            hours=hours,
            created_at=datetime.fromtimestamp(self._clock(), timezone.utc),
        )
        try:
            await self._call(self.rewards.insert(record))
        except Exception as e:
            logger.error(f"Failed to append miner reward for user {user_id}: {e}")
            if self.admin_logger:
                await self.admin_logger.log_ledger_failure("miner_rewards", record.to_document(), e)

    def _notify(self, user: User, amount: float, hours: int, rate: float):
        if not self.dispatcher or not self.config.miner_notifications:
            return
        total = user.miner.total_earned + amount
        text = (
            "⛏️ <b>Your miner earned income!</b>\n\n"
            f"💎 Received: {amount:.4f} ⭐\n"
            f"⏰ Period: {hours} hour(s)\n"
            f"📈 Income per hour: {rate:.4f} ⭐\n"
            f"📊 Total earned: {total:.4f} ⭐\n\n"
            "The miner keeps working automatically!"
        )
        try:
            self.dispatcher.publish(user.id, text)
        except Exception as e:
            logger.warning(f"Could not queue miner notification for user {user.id}: {e}")

    # ---------- Reporting ----------

    async def get_miner_history(self, user_id: int, limit: int = 10) -> list:
        try:
            records = await self._call(self.rewards.history(int(user_id), limit))
            return [r.to_document() for r in records]
        except Exception as e:
            logger.error(f"Failed to read miner history for user {user_id}: {e}")
            return []

    async def get_top_miners(self, limit: int = 10) -> list:
        try:
            users = await self._call(self.users.top_miners(limit))
        except Exception as e:
            logger.error(f"Failed to read top miners: {e}")
            return []
        return [
            {
                "id": u.id,
                "username": u.username,
                "totalEarned": u.miner.total_earned,
                "level": u.miner.level,
                "efficiency": u.miner.efficiency,
            }
            for u in users
        ]

    async def get_miner_leaderboard(self) -> list:
        return await self.get_top_miners(LEADERBOARD_SIZE)

    async def get_miner_totals(self) -> dict:
        try:
            totals = await self._call(self.users.miner_totals())
        except Exception as e:
            logger.error(f"Failed to read miner totals: {e}")
            totals = MinerTotals()
        return totals.to_dict()
