# tests/test_miner_service.py
import asyncio

import pytest

from magnum.database.models import MinerState
from magnum.services.miner_service import hours_elapsed
from tests.conftest import ADMIN_CHAT_ID, NOW, add_user


def active_miner(last_reward, efficiency=1.0, level=1, total_earned=0.0):
    return MinerState(
        active=True, total_earned=total_earned, last_reward=last_reward, level=level, efficiency=efficiency
    )


@pytest.mark.asyncio
async def test_accrual_pays_whole_hours_at_effective_rate(store, miner, dispatcher, notifier):
    add_user(store, 1, stars=10, miner=active_miner(NOW - 7300, efficiency=1.2))

    summary = await miner.process_miner_rewards()

    assert summary["skipped"] is False
    assert summary["activeMiners"] == 1
    assert summary["processedCount"] == 1
    assert summary["totalRewards"] == pytest.approx(0.24)

    doc = store.users[1]
    assert doc["stars"] == pytest.approx(10.24)
    assert doc["totalEarnedStars"] == pytest.approx(0.24)
    assert doc["miner"]["totalEarned"] == pytest.approx(0.24)
    assert doc["miner"]["lastReward"] == NOW

    [reward] = store.miner_rewards
    assert reward.user_id == 1
    assert reward.hours == 2
    assert reward.amount == pytest.approx(0.24)

    await dispatcher.drain()
    [text] = notifier.texts_for(1)
    assert "0.2400" in text
    assert "2 hour(s)" in text


@pytest.mark.asyncio
async def test_accrual_is_monotonic_and_never_double_pays(store, miner, clock):
    add_user(store, 1, miner=active_miner(NOW - 3 * 3600))

    first = await miner.process_miner_rewards()
    again = await miner.process_miner_rewards()
    clock.advance(3599)
    still_short = await miner.process_miner_rewards()
    clock.advance(1)
    next_hour = await miner.process_miner_rewards()

    assert first["totalRewards"] == pytest.approx(0.3)
    assert again["processedCount"] == 0
    assert still_short["processedCount"] == 0
    assert next_hour["totalRewards"] == pytest.approx(0.1)
    assert store.users[1]["stars"] == pytest.approx(0.4)
    assert store.users[1]["miner"]["lastReward"] == NOW + 3600
    assert [r.hours for r in store.miner_rewards] == [3, 1]


@pytest.mark.asyncio
async def test_accrual_skips_inactive_miners(store, miner):
    add_user(store, 1, miner=MinerState(active=False, last_reward=NOW - 10 * 3600))

    summary = await miner.process_miner_rewards()

    assert summary["activeMiners"] == 0
    assert store.users[1]["stars"] == 0


@pytest.mark.asyncio
async def test_missing_checkpoint_is_reanchored_without_payment(store, miner):
    add_user(store, 1, miner=active_miner(0))

    summary = await miner.process_miner_rewards()

    assert summary["reanchored"] == 1
    assert summary["processedCount"] == 0
    assert store.users[1]["stars"] == 0
    assert store.users[1]["miner"]["lastReward"] == NOW


@pytest.mark.asyncio
async def test_concurrent_change_makes_payout_a_conflict(store, miner, monkeypatch):
    add_user(store, 1, miner=active_miner(NOW - 5 * 3600))
    load_miners = store.get_active_miners

    async def miners_then_restart():
        miners = await load_miners()
        # user stopped and restarted the miner after the snapshot was taken
        store.users[1]["miner"]["lastReward"] = NOW - 60
        return miners

    monkeypatch.setattr(store, "get_active_miners", miners_then_restart)

    summary = await miner.process_miner_rewards()

    assert summary["conflicts"] == 1
    assert summary["processedCount"] == 0
    assert store.users[1]["stars"] == 0
    assert store.users[1]["miner"]["lastReward"] == NOW - 60
    assert store.miner_rewards == []


@pytest.mark.asyncio
async def test_overlapping_pass_is_skipped(store, miner, monkeypatch):
    add_user(store, 1, miner=active_miner(NOW - 3600))
    gate = asyncio.Event()
    load_miners = store.get_active_miners

    async def gated():
        await gate.wait()
        return await load_miners()

    monkeypatch.setattr(store, "get_active_miners", gated)

    first = asyncio.create_task(miner.process_miner_rewards())
    while not miner._job_lock.locked():
        await asyncio.sleep(0)

    second = await miner.process_miner_rewards()
    gate.set()
    summary = await first

    assert second["skipped"] is True
    assert summary["processedCount"] == 1
    assert store.users[1]["stars"] == pytest.approx(0.1)
    assert miner.last_run is summary


@pytest.mark.asyncio
async def test_failed_user_does_not_stop_the_pass(store, miner, monkeypatch):
    add_user(store, 1, miner=active_miner(NOW - 3600))
    add_user(store, 2, miner=active_miner(NOW - 3600))
    update_user = store.update_user

    async def flaky_update(user_id, **kwargs):
        if user_id == 1:
            raise ConnectionError("connection reset")
        return await update_user(user_id, **kwargs)

    monkeypatch.setattr(store, "update_user", flaky_update)

    summary = await miner.process_miner_rewards()

    assert summary["errors"] == 1
    assert summary["processedCount"] == 1
    assert store.users[2]["stars"] == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_batch_summary_goes_to_admin_chat(store, miner, admin_notifier):
    add_user(store, 1, miner=active_miner(NOW - 3600))

    await miner.process_miner_rewards()

    [text] = admin_notifier.texts_for(ADMIN_CHAT_ID)
    assert "Miner Rewards Processed" in text


@pytest.mark.asyncio
async def test_notifications_can_be_disabled(store, miner, config, dispatcher):
    config.miner_notifications = False
    add_user(store, 1, miner=active_miner(NOW - 3600))

    await miner.process_miner_rewards()

    assert dispatcher.pending() == 0


@pytest.mark.asyncio
async def test_start_miner_sets_checkpoint(store, miner):
    add_user(store, 1, miner=MinerState(active=False, last_reward=NOW - 10 * 3600))

    result = await miner.start_miner(1)

    assert result.success
    assert store.users[1]["miner"]["active"] is True
    assert store.users[1]["miner"]["lastReward"] == NOW

    summary = await miner.process_miner_rewards()
    assert summary["processedCount"] == 0
    assert store.users[1]["stars"] == 0


@pytest.mark.asyncio
async def test_start_miner_twice(store, miner):
    add_user(store, 1)

    assert (await miner.start_miner(1)).success
    second = await miner.start_miner(1)

    assert second.error == "AlreadyActiveError"


@pytest.mark.asyncio
async def test_start_miner_unknown_user(miner):
    result = await miner.start_miner(404)

    assert result.error == "UserNotFoundError"


@pytest.mark.asyncio
async def test_stop_miner_settles_whole_hours(store, miner):
    add_user(store, 1, stars=1, miner=active_miner(NOW - 3 * 3600 - 100, efficiency=1.5))

    result = await miner.stop_miner(1)

    assert result.success
    assert result["settledHours"] == 3
    assert result["settledReward"] == pytest.approx(0.45)
    doc = store.users[1]
    assert doc["miner"]["active"] is False
    assert doc["miner"]["lastReward"] == NOW
    assert doc["stars"] == pytest.approx(1.45)
    assert [r.hours for r in store.miner_rewards] == [3]

    again = await miner.stop_miner(1)
    assert again.error == "NotActiveError"


@pytest.mark.asyncio
async def test_stop_miner_within_first_hour_pays_nothing(store, miner):
    add_user(store, 1, miner=active_miner(NOW - 1800))

    result = await miner.stop_miner(1)

    assert result["settledReward"] == 0
    assert store.users[1]["miner"]["active"] is False
    assert store.miner_rewards == []


@pytest.mark.asyncio
async def test_upgrade_miner(store, miner):
    add_user(store, 1, stars=1500)

    result = await miner.upgrade_miner(1)

    assert result.success
    assert result["level"] == 2
    assert result["efficiency"] == pytest.approx(1.1)
    assert store.users[1]["stars"] == pytest.approx(500)
    assert store.users[1]["miner"]["level"] == 2

    poor = await miner.upgrade_miner(1)
    assert poor.error == "InsufficientFundsError"
    assert poor.message == "Not enough stars to upgrade! Required: 1000⭐"
    assert store.users[1]["stars"] == pytest.approx(500)


@pytest.mark.asyncio
async def test_upgraded_miner_earns_more(store, miner, clock):
    add_user(store, 1, stars=1000)
    await miner.upgrade_miner(1)
    await miner.start_miner(1)
    clock.advance(2 * 3600)

    summary = await miner.process_miner_rewards()

    assert summary["totalRewards"] == pytest.approx(2 * 0.1 * 1.1)


@pytest.mark.asyncio
async def test_miner_stats_projection(store, miner):
    add_user(store, 1, miner=active_miner(NOW - 7300, efficiency=1.2, level=3, total_earned=5))

    result = await miner.get_miner_stats(1)

    assert result.success
    assert result["isActive"] is True
    assert result["status"] == "🟢 Active"
    assert result["hoursSinceLastReward"] == 2
    assert result["rewardPerHour"] == pytest.approx(0.1)
    assert result["pendingReward"] == pytest.approx(0.2)
    assert result["effectiveRewardPerHour"] == pytest.approx(0.12)
    assert result["level"] == 3
    assert result["totalEarned"] == pytest.approx(5)


@pytest.mark.asyncio
async def test_miner_stats_inactive(store, miner):
    add_user(store, 1, miner=MinerState(active=False, last_reward=NOW - 7300))

    result = await miner.get_miner_stats(1)

    assert result["status"] == "🔴 Inactive"
    assert result["pendingReward"] == 0


@pytest.mark.asyncio
async def test_leaderboard_and_totals(store, miner):
    add_user(store, 1, username="low", miner=active_miner(NOW, total_earned=1))
    add_user(store, 2, username="high", miner=active_miner(NOW, total_earned=9, level=3, efficiency=1.2))
    add_user(store, 3, username="idle", miner=MinerState(active=False, total_earned=50))

    top = await miner.get_top_miners(limit=10)
    leaderboard = await miner.get_miner_leaderboard()
    totals = await miner.get_miner_totals()

    assert [m["username"] for m in top] == ["high", "low"]
    assert top[0]["level"] == 3
    assert leaderboard == top
    assert totals["totalActiveMiners"] == 2
    assert totals["totalMinerEarnings"] == pytest.approx(60)


@pytest.mark.asyncio
async def test_miner_history(store, miner, clock):
    add_user(store, 1, miner=active_miner(NOW - 3600))
    await miner.process_miner_rewards()
    clock.advance(7200)
    await miner.process_miner_rewards()

    history = await miner.get_miner_history(1)

    assert [h["hours"] for h in history] == [2, 1]
    assert history[0]["userId"] == 1


@pytest.mark.parametrize(
    "last, now, hours",
    [(0, NOW, 0), (NOW, NOW, 0), (NOW + 10, NOW, 0), (NOW - 3599, NOW, 0), (NOW - 3600, NOW, 1), (NOW - 7300, NOW, 2)],
)
def test_hours_elapsed(last, now, hours):
    assert hours_elapsed(last, now) == hours


@pytest.mark.asyncio
async def test_user_document_without_miner_record(store, miner):
    store.users[7] = {"id": 7, "stars": 5000}

    upgraded = await miner.upgrade_miner(7)
    started = await miner.start_miner(7)

    assert upgraded.success, upgraded.message
    assert upgraded["level"] == 2
    assert started.success, started.message
    doc = store.users[7]
    assert doc["stars"] == pytest.approx(4000)
    assert doc["miner"]["active"] is True
    assert doc["miner"]["lastReward"] == NOW
