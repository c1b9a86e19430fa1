# src/rewardpool/ledger/stake_ledger.py
from __future__ import annotations

"""Staked balances per account and the running pool total.

Leaf component: knows nothing about rewards. Callers are responsible for
refreshing the reward accumulator before any function here changes the total.
"""

from typing import Any, Dict

from rewardpool.ledger.state import ensure_account, get_account, pool_of
from rewardpool.runtime.errors import InsufficientBalance, InvalidArgument

Json = Dict[str, Any]


def total_staked(state: Json) -> int:
    return int(pool_of(state)["total_staked"])


def balance_of(state: Json, account_id: str) -> int:
    acct = get_account(state, account_id)
    if acct is None:
        return 0
    return int(acct.get("balance", 0))


def _require_positive(amount: Any, op: str) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidArgument(reason="amount_not_integer", details={"op": op, "amount": repr(amount)})
    if amount <= 0:
        raise InvalidArgument(reason="cannot_use_zero_amount", details={"op": op, "amount": int(amount)})
    return int(amount)


def credit(state: Json, account_id: str, amount: int) -> int:
    """Add `amount` to the account's stake and to the pool total. Returns the new balance."""
    amt = _require_positive(amount, "stake")
    pool = pool_of(state)
    acct = ensure_account(state, account_id)
    pool["total_staked"] = int(pool["total_staked"]) + amt
    acct["balance"] = int(acct["balance"]) + amt
    return int(acct["balance"])


def debit(state: Json, account_id: str, amount: int) -> int:
    """Remove `amount` from the account's stake and from the pool total. Returns the new balance."""
    amt = _require_positive(amount, "withdraw")
    bal = balance_of(state, account_id)
    if amt > bal:
        raise InsufficientBalance(details={"account": account_id, "balance": bal, "amount": amt})
    pool = pool_of(state)
    acct = ensure_account(state, account_id)
    pool["total_staked"] = int(pool["total_staked"]) - amt
    acct["balance"] = bal - amt
    return int(acct["balance"])


__all__ = ["balance_of", "credit", "debit", "total_staked"]
