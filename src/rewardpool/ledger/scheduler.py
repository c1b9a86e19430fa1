# src/rewardpool/ledger/scheduler.py
from __future__ import annotations

"""Reward period (re)arming.

notify_reward_amount() starts a new period of rewards_duration from `now`.
If a period is still running, the reward not yet emitted under the old rate
is rolled into the new one so it is not lost:

    leftover = (period_finish - now) * reward_rate
    reward_rate = (reward + leftover) // rewards_duration

The new rate is bounded by the reward funding actually held by the pool,
integrated over the full duration.
"""

from typing import Any, Dict

from rewardpool.ledger.checkpoint import checkpoint
from rewardpool.ledger.constants import NO_ACCOUNT
from rewardpool.ledger.state import pool_of
from rewardpool.runtime.errors import InsolventRate, InvalidArgument, PeriodNotFinished

Json = Dict[str, Any]


def period_active(state: Json, now: int) -> bool:
    return int(now) < int(pool_of(state)["period_finish"])


def reward_for_duration(state: Json) -> int:
    pool = pool_of(state)
    return int(pool["reward_rate"]) * int(pool["rewards_duration"])


def leftover_reward(state: Json, now: int) -> int:
    """Reward still owed under the current rate for the rest of the active period."""
    pool = pool_of(state)
    if not period_active(state, now):
        return 0
    return (int(pool["period_finish"]) - int(now)) * int(pool["reward_rate"])


def notify_reward_amount(state: Json, reward: int, now: int, *, available_funding: int) -> Json:
    if isinstance(reward, bool) or not isinstance(reward, int) or reward < 0:
        raise InvalidArgument(reason="reward_must_be_non_negative_integer", details={"reward": repr(reward)})

    pool = pool_of(state)
    duration = int(pool["rewards_duration"])
    if duration <= 0:
        raise InvalidArgument(reason="rewards_duration_unset", details={"rewards_duration": duration})

    # Leftover depends only on the schedule, so the solvency check can run
    # before the accumulator moves; a rejected call leaves the pool as it was.
    leftover = leftover_reward(state, now)
    rate = (int(reward) + leftover) // duration

    funding = max(int(available_funding), 0)
    ceiling = funding // duration
    if rate > ceiling:
        raise InsolventRate(
            details={
                "reward": int(reward),
                "leftover": int(leftover),
                "rate": int(rate),
                "max_rate": int(ceiling),
                "available_funding": int(funding),
                "rewards_duration": duration,
            }
        )

    checkpoint(state, NO_ACCOUNT, now)
    pool["reward_rate"] = int(rate)
    pool["last_update_time"] = int(now)
    pool["period_finish"] = int(now) + duration

    return {
        "applied": "REWARD_ADDED",
        "reward": int(reward),
        "leftover": int(leftover),
        "reward_rate": int(rate),
        "period_finish": int(pool["period_finish"]),
    }


def set_rewards_duration(state: Json, duration: int, now: int) -> Json:
    pool = pool_of(state)
    finish = int(pool["period_finish"])
    if int(now) <= finish:
        raise PeriodNotFinished(details={"now": int(now), "period_finish": finish})
    if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
        raise InvalidArgument(reason="rewards_duration_must_be_positive", details={"duration": repr(duration)})

    pool["rewards_duration"] = int(duration)
    return {"applied": "REWARDS_DURATION_UPDATED", "rewards_duration": int(duration)}


__all__ = [
    "leftover_reward",
    "notify_reward_amount",
    "period_active",
    "reward_for_duration",
    "set_rewards_duration",
]
