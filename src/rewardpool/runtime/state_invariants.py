# src/rewardpool/runtime/state_invariants.py
from __future__ import annotations

"""State invariants / normalization helpers.

Pool state is a nested JSON-like dict mutated by the ledger functions. This
module is the single place that:

  - validates the state is dict-like and has the core containers
  - audits the cross-account invariants that the O(1) operations rely on

check_invariants() walks every account, so the engine only calls it when the
pool is configured with check_invariants=True (tests, staging).
"""

from collections.abc import MutableMapping
from typing import Any, Dict, List

from rewardpool.ledger.state import pool_of
from rewardpool.runtime.errors import InvariantViolation

Json = Dict[str, Any]

_POOL_INT_FIELDS = (
    "total_staked",
    "reward_rate",
    "reward_per_unit_stored",
    "last_update_time",
    "period_finish",
    "rewards_duration",
)

_ACCOUNT_INT_FIELDS = ("balance", "reward_per_unit_paid", "unclaimed_reward")


def ensure_state(st: Any) -> Json:
    """Ensure `st` is a dict and contains core keys.

    Returns the (possibly mutated) dict.

    Raises:
        TypeError: if st is not a MutableMapping
    """
    if not isinstance(st, MutableMapping):
        raise TypeError(f"state must be MutableMapping, got {type(st)}")

    acc = st.get("accounts")
    if acc is None:
        st["accounts"] = {}
    elif not isinstance(acc, dict):
        # Fail closed: do not attempt to coerce arbitrary types.
        raise TypeError(f"state['accounts'] must be dict, got {type(acc)}")

    pool = st.get("pool")
    if pool is not None and not isinstance(pool, dict):
        raise TypeError(f"state['pool'] must be dict, got {type(pool)}")
    pool_of(st)  # type: ignore[arg-type]

    st.setdefault("pool_id", "")
    return st  # type: ignore[return-value]


def _is_nat(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool) and v >= 0


def collect_violations(state: Json) -> List[str]:
    out: List[str] = []
    pool = state.get("pool")
    if not isinstance(pool, dict):
        return ["pool_missing"]

    for k in _POOL_INT_FIELDS:
        if not _is_nat(pool.get(k)):
            out.append(f"pool.{k}_not_natural")

    accounts = state.get("accounts")
    if not isinstance(accounts, dict):
        return out + ["accounts_missing"]

    stored = pool.get("reward_per_unit_stored")
    total = 0
    for acct_id in sorted(accounts.keys()):
        acct = accounts[acct_id]
        if not isinstance(acct, dict):
            out.append(f"accounts[{acct_id}]_not_dict")
            continue
        for k in _ACCOUNT_INT_FIELDS:
            if not _is_nat(acct.get(k)):
                out.append(f"accounts[{acct_id}].{k}_not_natural")
        bal = acct.get("balance")
        if _is_nat(bal):
            total += int(bal)
        paid = acct.get("reward_per_unit_paid")
        if _is_nat(paid) and _is_nat(stored) and int(paid) > int(stored):
            out.append(f"accounts[{acct_id}].reward_per_unit_paid_ahead_of_pool")

    if _is_nat(pool.get("total_staked")) and int(pool["total_staked"]) != total:
        out.append("total_staked_mismatch")

    return out


def check_invariants(state: Json) -> None:
    problems = collect_violations(state)
    if problems:
        raise InvariantViolation(details={"violations": problems})


__all__ = ["check_invariants", "collect_violations", "ensure_state"]
