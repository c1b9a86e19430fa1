# src/rewardpool/runtime/engine.py
from __future__ import annotations

"""Staking engine: the orchestrator for stake / withdraw / claim / exit and
the administrator operations.

Every operation runs in this order:

  1. enter the operation guard (serial execution, reentrancy rejected)
  2. gate checks (pause, admin)
  3. checkpoint(caller): accumulator refresh, then account settlement
  4. ledger mutation
  5. custody transfers, settled as one batch
  6. events, published after the guard is released

Any failure in 2-5 restores the undo snapshot taken at step 1, so an
operation either applies completely or leaves no trace.
"""

import copy
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from rewardpool.ledger import scheduler
from rewardpool.ledger.accumulator import current_reward_per_unit, effective_time
from rewardpool.ledger.checkpoint import checkpoint, earned
from rewardpool.ledger.constants import DEFAULT_REWARDS_DURATION, NO_ACCOUNT, POOL_ACCOUNT_ID
from rewardpool.ledger.stake_ledger import balance_of, credit, debit, total_staked
from rewardpool.ledger.state import PoolView, accounts_of, get_account, new_pool_state, pool_of
from rewardpool.runtime.collaborators import Authorizer, Clock, PauseGate, Transfer, TransferAgent, TransferError
from rewardpool.runtime.errors import (
    ApplyError,
    ClockRegression,
    InvalidArgument,
    Paused,
    TransferFailed,
    Unauthorized,
)
from rewardpool.runtime.events import (
    EventBus,
    PauseChanged,
    PoolEvent,
    Recovered,
    RewardAdded,
    RewardPaid,
    RewardsDurationUpdated,
    Staked,
    Withdrawn,
)
from rewardpool.runtime.metrics import observe_pool, record_op, record_rejection
from rewardpool.runtime.pool_logging import log_event
from rewardpool.runtime.single_writer import OperationGuard
from rewardpool.runtime.state_invariants import check_invariants, ensure_state

Json = Dict[str, Any]

logger = logging.getLogger("rewardpool.engine")


class _Undo:
    """Pre-images of the records an operation may touch."""

    def __init__(self, state: Json, account_ids: Iterable[str]) -> None:
        self._pool = dict(pool_of(state))
        self._accounts: Dict[str, Optional[Json]] = {}
        for a in account_ids:
            if not a or a in self._accounts:
                continue
            acct = get_account(state, a)
            self._accounts[a] = dict(acct) if acct is not None else None

    def restore(self, state: Json) -> None:
        pool = pool_of(state)
        pool.clear()
        pool.update(self._pool)
        accts = accounts_of(state)
        for a, rec in self._accounts.items():
            if rec is None:
                accts.pop(a, None)
            else:
                accts[a] = dict(rec)


def _caller_id(caller: Any) -> str:
    c = caller.strip() if isinstance(caller, str) else ""
    if c == NO_ACCOUNT:
        raise InvalidArgument(reason="caller_required", details={"caller": repr(caller)})
    return c


class StakingEngine:
    """Single-token stake / single-token reward pool.

    The engine owns its state dict; callers read it through the query methods
    or snapshot(). Collaborators are injected so custody, time, authorization
    and pausing stay outside the reward math.
    """

    def __init__(
        self,
        *,
        stake_token: str,
        reward_token: str,
        vault: TransferAgent,
        clock: Clock,
        authorizer: Authorizer,
        pause: PauseGate,
        pool_account: str = POOL_ACCOUNT_ID,
        state: Optional[Json] = None,
        pool_id: str = "",
        rewards_duration: int = DEFAULT_REWARDS_DURATION,
        events: Optional[EventBus] = None,
        check_invariants: bool = False,
    ) -> None:
        if not str(stake_token or "").strip():
            raise ValueError("stake_token must be a non-empty string")
        if not str(reward_token or "").strip():
            raise ValueError("reward_token must be a non-empty string")
        if not str(pool_account or "").strip():
            raise ValueError("pool_account must be a non-empty string")

        self.stake_token = str(stake_token).strip()
        self.reward_token = str(reward_token).strip()
        self.pool_account = str(pool_account).strip()

        self._vault = vault
        self._clock = clock
        self._authorizer = authorizer
        self._pause = pause
        self.events = events if events is not None else EventBus()
        self._check_invariants = bool(check_invariants)

        if state is None:
            self._state = new_pool_state(pool_id=pool_id, rewards_duration=int(rewards_duration))
        else:
            self._state = ensure_state(state)
            if pool_id and not self._state.get("pool_id"):
                self._state["pool_id"] = str(pool_id)

        self._guard = OperationGuard()
        self._pending: List[PoolEvent] = []
        self._last_now = int(pool_of(self._state)["last_update_time"])

    # ----------------------------
    # Plumbing
    # ----------------------------

    def _now(self) -> int:
        t = int(self._clock.now())
        if t < self._last_now:
            raise ClockRegression(details={"now": t, "last_seen": self._last_now})
        self._last_now = t
        return t

    @contextmanager
    def _operation(self, op: str, caller: str, *, accounts: Sequence[str] = ()) -> Iterator[int]:
        try:
            with self._guard.enter(op):
                self._pending = []
                now = self._now()
                undo = _Undo(self._state, accounts)
                try:
                    yield now
                    if self._check_invariants:
                        check_invariants(self._state)
                except BaseException:
                    undo.restore(self._state)
                    self._pending = []
                    raise
                committed = self._pending
                self._pending = []
        except ApplyError as e:
            record_rejection(op, e.code)
            log_event(logger, "op_rejected", op=op, caller=caller, code=e.code, reason=e.reason)
            raise

        record_op(op)
        observe_pool(pool_of(self._state))
        for evt in committed:
            self.events.publish(evt)

    def _require_not_paused(self, op: str) -> None:
        if self._pause.is_paused():
            raise Paused(details={"op": op})

    def _require_admin(self, caller: str, op: str) -> None:
        if not self._authorizer.is_admin(caller):
            raise Unauthorized(details={"op": op, "caller": caller})

    def _settle(self, transfers: Sequence[Transfer]) -> None:
        if self._check_invariants:
            check_invariants(self._state)
        batch = [t for t in transfers if int(t.amount) > 0]
        if not batch:
            return
        try:
            ok = self._vault.settle(batch, pool_account=self.pool_account)
        except TransferError as e:
            raise TransferFailed(details={"transfers": [t.to_json() for t in batch], "error": str(e)}) from e
        if ok is False:
            raise TransferFailed(details={"transfers": [t.to_json() for t in batch]})

    def _available_reward_funding(self) -> int:
        held = int(self._vault.balance_of(self.reward_token, self.pool_account))
        if self.reward_token == self.stake_token:
            # Staked principal never backs rewards.
            held -= total_staked(self._state)
        return max(held, 0)

    # ----------------------------
    # Queries
    # ----------------------------

    def last_time_reward_applicable(self) -> int:
        with self._guard.read():
            return effective_time(self._state, self._now())

    def reward_per_unit(self) -> int:
        with self._guard.read():
            return current_reward_per_unit(self._state, self._now())

    def earned(self, account: str) -> int:
        with self._guard.read():
            return earned(self._state, str(account), self._now())

    def balance_of(self, account: str) -> int:
        with self._guard.read():
            return balance_of(self._state, str(account))

    def total_staked(self) -> int:
        with self._guard.read():
            return total_staked(self._state)

    def reward_for_duration(self) -> int:
        with self._guard.read():
            return scheduler.reward_for_duration(self._state)

    def available_reward_funding(self) -> int:
        with self._guard.read():
            return self._available_reward_funding()

    def is_paused(self) -> bool:
        return bool(self._pause.is_paused())

    def view(self) -> PoolView:
        with self._guard.read():
            return PoolView.from_state(self._state)

    def snapshot(self) -> Json:
        with self._guard.read():
            return copy.deepcopy(self._state)

    def restore(self, snapshot: Json) -> None:
        """Put back a state taken with snapshot(). No events, no metrics."""
        with self._guard.enter("restore"):
            self._state = ensure_state(copy.deepcopy(snapshot))
            self._pending = []

    # ----------------------------
    # Participant operations
    # ----------------------------

    def stake(self, caller: str, amount: int) -> int:
        who = _caller_id(caller)
        with self._operation("stake", who, accounts=(who,)) as now:
            self._require_not_paused("stake")
            checkpoint(self._state, who, now, create=True)
            new_balance = credit(self._state, who, amount)
            self._settle([Transfer.inbound(self.stake_token, who, int(amount))])
            self._pending.append(Staked(account=who, amount=int(amount)))
            log_event(logger, "stake", account=who, amount=int(amount), balance=new_balance, total_staked=total_staked(self._state), now=now)
        return int(amount)

    def withdraw(self, caller: str, amount: int) -> int:
        who = _caller_id(caller)
        with self._operation("withdraw", who, accounts=(who,)) as now:
            self._require_not_paused("withdraw")
            checkpoint(self._state, who, now)
            new_balance = debit(self._state, who, amount)
            self._settle([Transfer.outbound(self.stake_token, who, int(amount))])
            self._pending.append(Withdrawn(account=who, amount=int(amount)))
            log_event(logger, "withdraw", account=who, amount=int(amount), balance=new_balance, total_staked=total_staked(self._state), now=now)
        return int(amount)

    def claim(self, caller: str) -> int:
        """Pay out the caller's unclaimed reward. Returns the amount paid (0 is a no-op)."""
        who = _caller_id(caller)
        with self._operation("claim", who, accounts=(who,)) as now:
            self._require_not_paused("claim")
            reward = self._take_reward(who, now)
            if reward > 0:
                self._settle([Transfer.outbound(self.reward_token, who, reward)])
                self._pending.append(RewardPaid(account=who, amount=reward))
                log_event(logger, "reward_paid", account=who, amount=reward, now=now)
        return reward

    def exit(self, caller: str) -> Json:
        """withdraw(balance) + claim() as one unit: both transfers settle in a single batch."""
        who = _caller_id(caller)
        with self._operation("exit", who, accounts=(who,)) as now:
            self._require_not_paused("exit")
            checkpoint(self._state, who, now)
            stake_amt = balance_of(self._state, who)
            debit(self._state, who, stake_amt)
            reward = self._take_reward(who, now)

            transfers = [Transfer.outbound(self.stake_token, who, stake_amt)]
            if reward > 0:
                transfers.append(Transfer.outbound(self.reward_token, who, reward))
            self._settle(transfers)

            self._pending.append(Withdrawn(account=who, amount=stake_amt))
            if reward > 0:
                self._pending.append(RewardPaid(account=who, amount=reward))
            log_event(logger, "exit", account=who, withdrawn=stake_amt, reward=reward, total_staked=total_staked(self._state), now=now)
        return {"withdrawn": stake_amt, "reward": reward}

    def _take_reward(self, who: str, now: int) -> int:
        checkpoint(self._state, who, now)
        acct = get_account(self._state, who)
        if acct is None:
            return 0
        reward = int(acct.get("unclaimed_reward", 0))
        if reward > 0:
            acct["unclaimed_reward"] = 0
        return reward

    # ----------------------------
    # Administrator operations
    # ----------------------------

    def notify_reward_amount(self, caller: str, reward: int, *, pull_from_caller: bool = False) -> Json:
        """Arm (or top up) a reward period.

        With pull_from_caller the reward is transferred in from the administrator
        as part of the same operation; otherwise it must already be held by the pool.
        """
        who = _caller_id(caller)
        with self._operation("notify_reward_amount", who) as now:
            self._require_admin(who, "notify_reward_amount")
            funding = self._available_reward_funding()
            if pull_from_caller and isinstance(reward, int) and not isinstance(reward, bool) and reward > 0:
                funding += int(reward)
            meta = scheduler.notify_reward_amount(self._state, reward, now, available_funding=funding)
            if pull_from_caller:
                self._settle([Transfer.inbound(self.reward_token, who, int(reward))])
            self._pending.append(RewardAdded(reward=int(reward)))
            log_event(logger, "reward_added", caller=who, now=now, **meta)
        return meta

    def set_rewards_duration(self, caller: str, duration: int) -> Json:
        who = _caller_id(caller)
        with self._operation("set_rewards_duration", who) as now:
            self._require_admin(who, "set_rewards_duration")
            meta = scheduler.set_rewards_duration(self._state, duration, now)
            self._pending.append(RewardsDurationUpdated(duration=int(duration)))
            log_event(logger, "rewards_duration_updated", caller=who, duration=int(duration), now=now)
        return meta

    def recover_token(self, caller: str, token: str, amount: int) -> int:
        """Send a stray token held by the pool to the administrator. Never the stake token."""
        who = _caller_id(caller)
        with self._operation("recover_token", who) as now:
            self._require_admin(who, "recover_token")
            tok = str(token or "").strip()
            if not tok:
                raise InvalidArgument(reason="token_required")
            if tok == self.stake_token:
                raise InvalidArgument(reason="cannot_recover_stake_token", details={"token": tok})
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                raise InvalidArgument(reason="cannot_use_zero_amount", details={"amount": repr(amount)})
            self._settle([Transfer.outbound(tok, who, int(amount))])
            self._pending.append(Recovered(token=tok, amount=int(amount)))
            log_event(logger, "recovered", caller=who, token=tok, amount=int(amount), now=now)
        return int(amount)

    def set_paused(self, caller: str, paused: bool) -> bool:
        """Returns True when the pause state changed."""
        who = _caller_id(caller)
        with self._operation("set_paused", who) as now:
            self._require_admin(who, "set_paused")
            setter = getattr(self._pause, "set", None)
            if not callable(setter):
                raise InvalidArgument(reason="pause_gate_read_only")
            changed = bool(setter(bool(paused)))
            if changed:
                self._pending.append(PauseChanged(paused=bool(paused)))
                log_event(logger, "pause_changed", caller=who, paused=bool(paused), now=now)
        return changed


__all__ = ["StakingEngine"]
