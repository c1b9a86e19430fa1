from __future__ import annotations

import pytest

from rewardpool.runtime.errors import ClockRegression, InsufficientBalance, InvalidArgument
from rewardpool.runtime.events import DEFAULT_HISTORY_LIMIT, EventBus, RewardAdded, RewardPaid, Staked, Withdrawn
from rewardpool.testing.harness import ADMIN, REWARD_TOKEN, STAKE_TOKEN, build_harness


def _names(h) -> list[str]:
    return [e.name for e in h.engine.events.history]


def test_single_staker_worked_example() -> None:
    h = build_harness(start=0, rewards_duration=100, wallets={"alice": 50})
    h.fund_rewards(1000)

    meta = h.engine.notify_reward_amount(ADMIN, 1000)
    assert meta["reward_rate"] == 10
    assert meta["period_finish"] == 100

    assert h.engine.stake("alice", 50) == 50
    assert h.wallet("alice", STAKE_TOKEN) == 0
    assert h.wallet(h.engine.pool_account, STAKE_TOKEN) == 50

    h.at(50)
    assert h.engine.earned("alice") == 500

    h.at(100)
    assert h.engine.earned("alice") == 1000

    # Accrual stops at period_finish.
    h.at(150)
    assert h.engine.earned("alice") == 1000
    assert h.engine.last_time_reward_applicable() == 100

    assert h.engine.claim("alice") == 1000
    assert h.wallet("alice", REWARD_TOKEN) == 1000
    assert h.wallet(h.engine.pool_account, REWARD_TOKEN) == 0
    assert h.engine.earned("alice") == 0

    assert _names(h) == ["RewardAdded", "Staked", "RewardPaid"]


def test_two_stakers_split_by_time_and_share() -> None:
    h = build_harness(rewards_duration=100, wallets={"alice": 100, "bob": 100})
    h.fund_rewards(1000)
    h.engine.notify_reward_amount(ADMIN, 1000)
    h.engine.stake("alice", 100)

    h.at(50)
    h.engine.stake("bob", 100)

    h.at(100)
    assert h.engine.earned("alice") == 750
    assert h.engine.earned("bob") == 250
    assert h.engine.earned("alice") + h.engine.earned("bob") <= h.engine.reward_for_duration()


def test_stake_before_any_reward_earns_nothing_until_armed() -> None:
    h = build_harness(rewards_duration=100, wallets={"alice": 10})
    h.engine.stake("alice", 10)
    h.at(30)
    assert h.engine.earned("alice") == 0

    h.fund_rewards(100)
    h.engine.notify_reward_amount(ADMIN, 100)
    h.at(130)
    assert h.engine.earned("alice") == 100


def test_withdraw_returns_stake_and_keeps_accrued_reward() -> None:
    h = build_harness(rewards_duration=100, wallets={"alice": 80})
    h.fund_rewards(1000)
    h.engine.notify_reward_amount(ADMIN, 1000)
    h.engine.stake("alice", 80)

    h.at(20)
    assert h.engine.withdraw("alice", 30) == 30
    assert h.engine.balance_of("alice") == 50
    assert h.engine.total_staked() == 50
    assert h.wallet("alice", STAKE_TOKEN) == 30
    # 20s alone at rate 10.
    assert h.engine.earned("alice") == 200

    with pytest.raises(InsufficientBalance):
        h.engine.withdraw("alice", 51)


def test_claim_with_nothing_owed_is_a_noop() -> None:
    h = build_harness()
    assert h.engine.claim("nobody") == 0
    assert h.engine.view().accounts == {}
    assert _names(h) == []


def test_exit_withdraws_everything_and_claims() -> None:
    h = build_harness(rewards_duration=100, wallets={"alice": 50})
    h.fund_rewards(1000)
    h.engine.notify_reward_amount(ADMIN, 1000)
    h.engine.stake("alice", 50)

    h.at(100)
    out = h.engine.exit("alice")
    assert out == {"withdrawn": 50, "reward": 1000}
    assert h.wallet("alice", STAKE_TOKEN) == 50
    assert h.wallet("alice", REWARD_TOKEN) == 1000
    assert h.engine.balance_of("alice") == 0
    assert h.engine.total_staked() == 0

    history = h.engine.events.history
    assert history[-2] == Withdrawn(account="alice", amount=50)
    assert history[-1] == RewardPaid(account="alice", amount=1000)


def test_exit_with_no_stake_is_rejected() -> None:
    h = build_harness()
    with pytest.raises(InvalidArgument):
        h.engine.exit("alice")


def test_rollover_keeps_unemitted_reward() -> None:
    h = build_harness(rewards_duration=100, wallets={"alice": 1})
    h.fund_rewards(1500)
    h.engine.notify_reward_amount(ADMIN, 1000)
    h.engine.stake("alice", 1)

    h.at(50)
    meta = h.engine.notify_reward_amount(ADMIN, 500)
    assert meta["leftover"] == 500
    assert meta["reward_rate"] == 10
    assert meta["period_finish"] == 150

    h.at(150)
    assert h.engine.earned("alice") == 1500


def test_pull_funding_transfers_reward_from_admin() -> None:
    h = build_harness(rewards_duration=100)
    h.give(ADMIN, 1000, token=REWARD_TOKEN)

    meta = h.engine.notify_reward_amount(ADMIN, 1000, pull_from_caller=True)
    assert meta["reward_rate"] == 10
    assert h.wallet(ADMIN, REWARD_TOKEN) == 0
    assert h.engine.available_reward_funding() == 1000
    assert h.engine.events.history == [RewardAdded(reward=1000)]


def test_empty_caller_is_rejected() -> None:
    h = build_harness(wallets={"alice": 1})
    with pytest.raises(InvalidArgument) as ei:
        h.engine.stake("  ", 1)
    assert ei.value.reason == "caller_required"


def test_clock_going_backwards_is_refused() -> None:
    h = build_harness(wallets={"alice": 10})
    h.at(10)
    h.engine.stake("alice", 5)
    h.at(5)
    with pytest.raises(ClockRegression):
        h.engine.stake("alice", 5)
    assert h.engine.events.history == [Staked(account="alice", amount=5)]


def test_view_and_snapshot_are_detached_copies() -> None:
    h = build_harness(wallets={"alice": 10})
    h.engine.stake("alice", 10)
    snap = h.engine.snapshot()
    snap["accounts"]["alice"]["balance"] = 999
    assert h.engine.balance_of("alice") == 10

    view = h.engine.view()
    assert view.get_account("alice").balance == 10
    assert view.pool_json()["accounts"] == 1
    assert view.get_account("nobody").balance == 0


def test_event_history_keeps_only_recent_events() -> None:
    h = build_harness(wallets={"alice": DEFAULT_HISTORY_LIMIT + 10})
    for _ in range(DEFAULT_HISTORY_LIMIT + 10):
        h.engine.stake("alice", 1)

    history = h.engine.events.history
    assert len(history) == DEFAULT_HISTORY_LIMIT
    assert all(e == Staked(account="alice", amount=1) for e in history)


def test_bus_without_history_still_reaches_subscribers() -> None:
    bus = EventBus(history_limit=0)
    seen = []
    bus.subscribe(seen.append)
    bus.publish(Staked(account="alice", amount=1))
    assert seen == [Staked(account="alice", amount=1)]
    assert bus.history == []
