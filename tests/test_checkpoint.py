from __future__ import annotations

from rewardpool.ledger.checkpoint import checkpoint, earned
from rewardpool.ledger.constants import NO_ACCOUNT, SCALE
from rewardpool.ledger.stake_ledger import credit
from rewardpool.ledger.state import get_account, new_pool_state, pool_of


def _armed(rate: int = 10, finish: int = 100) -> dict:
    st = new_pool_state(rewards_duration=finish)
    pool = pool_of(st)
    pool["reward_rate"] = rate
    pool["period_finish"] = finish
    return st


def test_checkpoint_before_balance_change_credits_elapsed_interval() -> None:
    st = _armed()
    checkpoint(st, "alice", 0, create=True)
    credit(st, "alice", 100)

    # Second deposit at t=40: the 40s already accrued must be captured first.
    owed = checkpoint(st, "alice", 40)
    assert owed == 400
    credit(st, "alice", 100)

    acct = get_account(st, "alice")
    assert acct is not None
    assert acct["unclaimed_reward"] == 400
    assert acct["reward_per_unit_paid"] == pool_of(st)["reward_per_unit_stored"]
    assert earned(st, "alice", 100) == 1000


def test_checkpoint_does_not_create_unknown_accounts_by_default() -> None:
    st = _armed()
    assert checkpoint(st, "ghost", 10) == 0
    assert get_account(st, "ghost") is None


def test_no_account_only_refreshes_the_pool() -> None:
    st = _armed()
    checkpoint(st, "alice", 0, create=True)
    credit(st, "alice", 50)
    assert checkpoint(st, NO_ACCOUNT, 50) == 0
    assert pool_of(st)["reward_per_unit_stored"] == 10 * 50 * SCALE // 50
    assert pool_of(st)["last_update_time"] == 50
    # The account was not settled.
    assert get_account(st, "alice")["unclaimed_reward"] == 0
    assert earned(st, "alice", 50) == 500


def test_earned_is_read_only() -> None:
    st = _armed()
    checkpoint(st, "alice", 0, create=True)
    credit(st, "alice", 50)
    before = repr(st)
    assert earned(st, "alice", 70) == 700
    assert repr(st) == before


def test_late_joiner_only_earns_from_join_time() -> None:
    st = _armed(rate=10, finish=100)
    checkpoint(st, "alice", 0, create=True)
    credit(st, "alice", 100)

    checkpoint(st, "bob", 50, create=True)
    credit(st, "bob", 100)

    assert earned(st, "alice", 100) == 750
    assert earned(st, "bob", 100) == 250
