from __future__ import annotations

import pytest

from rewardpool.ledger.stake_ledger import balance_of, credit, debit, total_staked
from rewardpool.ledger.state import get_account, new_pool_state
from rewardpool.runtime.errors import InsufficientBalance, InvalidArgument


def test_credit_and_debit_track_balance_and_total() -> None:
    st = new_pool_state()
    assert credit(st, "alice", 30) == 30
    assert credit(st, "bob", 20) == 20
    assert credit(st, "alice", 5) == 35
    assert total_staked(st) == 55

    assert debit(st, "alice", 35) == 0
    assert balance_of(st, "alice") == 0
    assert total_staked(st) == 20


@pytest.mark.parametrize("amount", [0, -1, True, 1.5, "10", None])
def test_credit_rejects_non_positive_or_non_integer(amount) -> None:
    st = new_pool_state()
    with pytest.raises(InvalidArgument):
        credit(st, "alice", amount)
    assert total_staked(st) == 0
    assert get_account(st, "alice") is None


def test_debit_over_balance_fails_without_mutation() -> None:
    st = new_pool_state()
    credit(st, "alice", 10)
    with pytest.raises(InsufficientBalance) as ei:
        debit(st, "alice", 11)
    assert ei.value.details == {"account": "alice", "balance": 10, "amount": 11}
    assert balance_of(st, "alice") == 10
    assert total_staked(st) == 10


def test_debit_zero_is_invalid() -> None:
    st = new_pool_state()
    credit(st, "alice", 10)
    with pytest.raises(InvalidArgument) as ei:
        debit(st, "alice", 0)
    assert ei.value.reason == "cannot_use_zero_amount"


def test_unknown_account_has_zero_balance() -> None:
    st = new_pool_state()
    assert balance_of(st, "nobody") == 0
    with pytest.raises(InsufficientBalance):
        debit(st, "nobody", 1)
