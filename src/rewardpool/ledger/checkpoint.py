# src/rewardpool/ledger/checkpoint.py
from __future__ import annotations

"""Per-account reward settlement.

Each account keeps the accumulator value it last saw (reward_per_unit_paid)
and the reward it has earned but not yet been paid (unclaimed_reward). The
difference between the live accumulator and the snapshot, times the balance,
is the reward accrued since the last checkpoint.

Ordering: checkpoint() refreshes the global accumulator *before* it reads
reward_per_unit_stored for the account. Reversing the two steps would give
the account zero credit for the interval just elapsed.
"""

from typing import Any, Dict

from rewardpool.ledger.accumulator import current_reward_per_unit, refresh
from rewardpool.ledger.constants import NO_ACCOUNT, SCALE
from rewardpool.ledger.state import ensure_account, get_account, pool_of

Json = Dict[str, Any]


def earned(state: Json, account_id: str, now: int) -> int:
    """Reward owed to `account_id` at `now`, including unsettled accrual. Read-only."""
    acct = get_account(state, account_id)
    if acct is None:
        return 0
    rpu = current_reward_per_unit(state, now)
    delta = rpu - int(acct.get("reward_per_unit_paid", 0))
    return (int(acct.get("balance", 0)) * delta) // SCALE + int(acct.get("unclaimed_reward", 0))


def settle_account(state: Json, account_id: str, now: int, *, create: bool = False) -> int:
    """Second half of checkpoint(): capture accrual and advance the snapshot.

    Assumes refresh() already ran for `now`. Returns the account's unclaimed reward.
    Unknown accounts are only materialized when `create` is set (first stake).
    """
    if get_account(state, account_id) is None and not create:
        return 0
    owed = earned(state, account_id, now)
    acct = ensure_account(state, account_id)
    acct["unclaimed_reward"] = int(owed)
    acct["reward_per_unit_paid"] = int(pool_of(state)["reward_per_unit_stored"])
    return int(owed)


def checkpoint(state: Json, account_id: str, now: int, *, create: bool = False) -> int:
    refresh(state, now)
    if account_id == NO_ACCOUNT:
        return 0
    return settle_account(state, account_id, now, create=create)


__all__ = ["checkpoint", "earned", "settle_account"]
