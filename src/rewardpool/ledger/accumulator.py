# src/rewardpool/ledger/accumulator.py
from __future__ import annotations

"""Lazily evaluated reward-per-unit-stake accumulator.

reward_per_unit_stored is the cumulative reward owed to one unit of stake
(fixed point, SCALE) up to last_update_time. Nothing iterates over accounts:
the value is projected forward on demand and written back by refresh().

Integer division always truncates toward zero, so any rounding error stays in
the pool and never lets payouts exceed funding.
"""

from typing import Any, Dict

from rewardpool.ledger.constants import SCALE
from rewardpool.ledger.state import pool_of
from rewardpool.runtime.errors import AccumulatorRegression

Json = Dict[str, Any]


def effective_time(state: Json, now: int) -> int:
    """min(now, period_finish): accrual stops when the reward period ends."""
    return min(int(now), int(pool_of(state)["period_finish"]))


def current_reward_per_unit(state: Json, now: int) -> int:
    pool = pool_of(state)
    stored = int(pool["reward_per_unit_stored"])
    total = int(pool["total_staked"])
    if total == 0:
        return stored
    elapsed = effective_time(state, now) - int(pool["last_update_time"])
    if elapsed <= 0:
        # A stale `now` never un-accrues.
        return stored
    return stored + (int(pool["reward_rate"]) * elapsed * SCALE) // total


def refresh(state: Json, now: int) -> int:
    """Write the projection back. Must run before total_staked or reward_rate change."""
    pool = pool_of(state)
    stored = int(pool["reward_per_unit_stored"])
    nxt = current_reward_per_unit(state, now)
    if nxt < stored:
        raise AccumulatorRegression(details={"stored": str(stored), "next": str(nxt), "now": int(now)})
    pool["reward_per_unit_stored"] = nxt
    pool["last_update_time"] = max(int(pool["last_update_time"]), effective_time(state, now))
    return nxt


__all__ = ["current_reward_per_unit", "effective_time", "refresh"]
