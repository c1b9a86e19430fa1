from __future__ import annotations

from dataclasses import dataclass, field
import copy
from typing import Any, Dict, Optional

from rewardpool.ledger.constants import DEFAULT_REWARDS_DURATION


Json = Dict[str, Any]


def _as_int(x: Any, default: int = 0) -> int:
    try:
        return int(x)
    except Exception:
        return int(default)


def new_pool_state(*, pool_id: str = "", rewards_duration: int = DEFAULT_REWARDS_DURATION) -> Json:
    return {
        "pool_id": str(pool_id),
        "pool": {
            "total_staked": 0,
            "reward_rate": 0,
            "reward_per_unit_stored": 0,
            "last_update_time": 0,
            "period_finish": 0,
            "rewards_duration": int(rewards_duration),
        },
        "accounts": {},
    }


def pool_of(state: Json) -> Json:
    """Return state["pool"], creating the canonical field set when missing."""
    pool = state.get("pool")
    if not isinstance(pool, dict):
        pool = {}
        state["pool"] = pool
    pool.setdefault("total_staked", 0)
    pool.setdefault("reward_rate", 0)
    pool.setdefault("reward_per_unit_stored", 0)
    pool.setdefault("last_update_time", 0)
    pool.setdefault("period_finish", 0)
    pool.setdefault("rewards_duration", DEFAULT_REWARDS_DURATION)
    return pool


def accounts_of(state: Json) -> Json:
    accts = state.get("accounts")
    if not isinstance(accts, dict):
        accts = {}
        state["accounts"] = accts
    return accts


def get_account(state: Json, account_id: str) -> Optional[Json]:
    acct = accounts_of(state).get(account_id)
    return acct if isinstance(acct, dict) else None


def ensure_account(state: Json, account_id: str) -> Json:
    accts = accounts_of(state)
    acct = accts.get(account_id)
    if not isinstance(acct, dict):
        acct = {"balance": 0, "reward_per_unit_paid": 0, "unclaimed_reward": 0}
        accts[account_id] = acct
    acct.setdefault("balance", 0)
    acct.setdefault("reward_per_unit_paid", 0)
    acct.setdefault("unclaimed_reward", 0)
    return acct


@dataclass(frozen=True, slots=True)
class AccountView:
    account: str
    balance: int = 0
    reward_per_unit_paid: int = 0
    unclaimed_reward: int = 0

    def to_json(self) -> Json:
        return {
            "account": self.account,
            "balance": int(self.balance),
            "reward_per_unit_paid": int(self.reward_per_unit_paid),
            "unclaimed_reward": int(self.unclaimed_reward),
        }


@dataclass(frozen=True, slots=True)
class PoolView:
    """
    Immutable read-only pool view used by the API and by tests.
    """

    pool_id: str = ""
    total_staked: int = 0
    reward_rate: int = 0
    reward_per_unit_stored: int = 0
    last_update_time: int = 0
    period_finish: int = 0
    rewards_duration: int = 0
    accounts: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_state(cls, state: Json) -> "PoolView":
        pool = state.get("pool") if isinstance(state.get("pool"), dict) else {}
        return cls(
            pool_id=str(state.get("pool_id") or ""),
            total_staked=_as_int(pool.get("total_staked")),
            reward_rate=_as_int(pool.get("reward_rate")),
            reward_per_unit_stored=_as_int(pool.get("reward_per_unit_stored")),
            last_update_time=_as_int(pool.get("last_update_time")),
            period_finish=_as_int(pool.get("period_finish")),
            rewards_duration=_as_int(pool.get("rewards_duration")),
            accounts=copy.deepcopy(state.get("accounts", {})) if isinstance(state.get("accounts"), dict) else {},
        )

    def get_account(self, account_id: str) -> AccountView:
        acct = self.accounts.get(account_id)
        if not isinstance(acct, dict):
            return AccountView(account=account_id)
        return AccountView(
            account=account_id,
            balance=_as_int(acct.get("balance")),
            reward_per_unit_paid=_as_int(acct.get("reward_per_unit_paid")),
            unclaimed_reward=_as_int(acct.get("unclaimed_reward")),
        )

    def pool_json(self) -> Json:
        return {
            "pool_id": self.pool_id,
            "total_staked": int(self.total_staked),
            "reward_rate": int(self.reward_rate),
            "reward_per_unit_stored": str(int(self.reward_per_unit_stored)),
            "last_update_time": int(self.last_update_time),
            "period_finish": int(self.period_finish),
            "rewards_duration": int(self.rewards_duration),
            "accounts": len(self.accounts),
        }
