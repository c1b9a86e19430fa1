from __future__ import annotations

import threading

import pytest

from rewardpool.runtime.errors import ReentrantCall, TransferFailed
from rewardpool.testing.harness import ADMIN, REWARD_TOKEN, STAKE_TOKEN, build_harness


def _armed(**kw):
    h = build_harness(rewards_duration=100, wallets={"alice": 50}, **kw)
    h.fund_rewards(1000)
    h.engine.notify_reward_amount(ADMIN, 1000)
    h.engine.stake("alice", 50)
    return h


def test_failed_claim_transfer_leaves_no_trace() -> None:
    h = _armed()
    h.at(40)
    before = h.engine.snapshot()
    n_events = len(h.engine.events.history)

    h.vault.freeze("alice")
    with pytest.raises(TransferFailed):
        h.engine.claim("alice")

    assert h.engine.snapshot() == before
    assert len(h.engine.events.history) == n_events
    assert h.wallet("alice", REWARD_TOKEN) == 0

    # The reward is still owed and claimable once transfers work again.
    h.vault.unfreeze("alice")
    assert h.engine.claim("alice") == 400


def test_failed_stake_transfer_does_not_credit() -> None:
    h = build_harness(wallets={"alice": 5})
    with pytest.raises(TransferFailed):
        h.engine.stake("alice", 6)
    assert h.engine.balance_of("alice") == 0
    assert h.engine.total_staked() == 0
    # The account record created for the first stake is rolled back too.
    assert h.engine.view().accounts == {}


def test_exit_is_all_or_nothing() -> None:
    h = _armed()
    # Drain the reward funding so the reward leg of exit cannot settle.
    h.engine.recover_token(ADMIN, REWARD_TOKEN, 1000)

    h.at(100)
    with pytest.raises(TransferFailed):
        h.engine.exit("alice")

    # Neither leg moved.
    assert h.engine.balance_of("alice") == 50
    assert h.wallet("alice", STAKE_TOKEN) == 0
    assert h.wallet(h.engine.pool_account, STAKE_TOKEN) == 50
    assert h.engine.earned("alice") == 1000


def test_reentrant_call_from_transfer_hook_is_rejected() -> None:
    h = build_harness(wallets={"alice": 10})

    def _reenter(_tr) -> None:
        h.engine.claim("alice")

    h.vault.add_hook(_reenter)
    with pytest.raises(ReentrantCall):
        h.engine.stake("alice", 10)

    h.vault.clear_hooks()
    assert h.engine.balance_of("alice") == 0
    assert h.wallet("alice", STAKE_TOKEN) == 10
    assert h.wallet(h.engine.pool_account, STAKE_TOKEN) == 0

    # Reads from inside an operation are allowed.
    seen = []
    h.vault.add_hook(lambda _tr: seen.append(h.engine.balance_of("alice")))
    h.engine.stake("alice", 10)
    assert seen == [10]


def test_unfunded_pull_leaves_schedule_untouched() -> None:
    h = build_harness(rewards_duration=100)
    h.give(ADMIN, 500, token=REWARD_TOKEN)

    with pytest.raises(TransferFailed):
        h.engine.notify_reward_amount(ADMIN, 1000, pull_from_caller=True)
    assert h.wallet(ADMIN, REWARD_TOKEN) == 500
    assert h.engine.view().reward_rate == 0


def test_concurrent_stakes_are_serialized() -> None:
    accounts = [f"acct{i}" for i in range(8)]
    h = build_harness(wallets={a: 100 for a in accounts})

    def _worker(a: str) -> None:
        for _ in range(10):
            h.engine.stake(a, 10)

    threads = [threading.Thread(target=_worker, args=(a,)) for a in accounts]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert h.engine.total_staked() == 800
    assert all(h.engine.balance_of(a) == 100 for a in accounts)
    assert h.wallet(h.engine.pool_account, STAKE_TOKEN) == 800
