from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from rewardpool.ledger.state import PoolView
from rewardpool.runtime.collaborators import AdminSet, Clock, InMemoryTokenVault, PauseSwitch, SystemClock
from rewardpool.runtime.engine import StakingEngine
from rewardpool.runtime.events import EventBus, PoolEvent
from rewardpool.runtime.pool_config import PoolConfig, load_pool_config
from rewardpool.runtime.pool_logging import log_event
from rewardpool.runtime.single_writer import SingleWriterLock
from rewardpool.runtime.sqlite_db import SqliteDB, SqlitePoolStore

Json = Dict[str, Any]

logger = logging.getLogger("rewardpool.executor")


class ExecutorError(RuntimeError):
    pass


class PoolExecutor:
    """Reward pool executor using SQLite for persistence.

    Wraps a StakingEngine and writes the pool snapshot, the custody balances
    and the operation's events after every successful call. A failed call
    changes nothing in memory and nothing on disk: the engine rolls back its
    own rejections, and a failed SQLite commit puts the engine, vault and
    pause flag back to the last committed image.
    """

    def __init__(
        self,
        *,
        config: PoolConfig,
        clock: Optional[Clock] = None,
        single_writer: bool = True,
    ) -> None:
        self.config = config
        self.pool_id = str(config.pool_id)
        self.db_path = str(config.db_path)

        self._writer_lock: Optional[SingleWriterLock] = None
        if single_writer:
            self._writer_lock = SingleWriterLock(str(Path(self.db_path).with_suffix(".lock")))
            self._writer_lock.acquire()

        self._db = SqliteDB(path=self.db_path)
        self._store = SqlitePoolStore(db=self._db)

        state: Optional[Json] = None
        if self._store.exists():
            state = self._store.read()
            st_pool_id = str(state.get("pool_id") or "").strip()
            if st_pool_id and st_pool_id != self.pool_id:
                self.close()
                raise ExecutorError(f"pool_id mismatch: db={st_pool_id!r} executor={self.pool_id!r}. Refuse to start.")

        self.vault = InMemoryTokenVault.load(self._store.read_vault())
        self.pause = PauseSwitch(self._store.read_flag("paused", "0") == "1")
        self.admins = AdminSet(config.admins)

        self._journal: List[PoolEvent] = []
        # The engine publishes into the journal; subscribers of `self.event_bus`
        # only see events whose operation reached disk.
        bus = EventBus(history_limit=0)
        bus.subscribe(self._journal.append)
        self.event_bus = EventBus()

        self.engine = StakingEngine(
            stake_token=config.stake_token,
            reward_token=config.reward_token,
            vault=self.vault,
            clock=clock or SystemClock(),
            authorizer=self.admins,
            pause=self.pause,
            pool_account=config.pool_account,
            state=state,
            pool_id=self.pool_id,
            rewards_duration=int(config.rewards_duration),
            events=bus,
            check_invariants=bool(config.check_invariants),
        )

        # Serializes operation + persistence so snapshots hit disk in apply order.
        self._lock = threading.Lock()

        # Last image known to be on disk; restored when a commit fails.
        self._committed: Tuple[Json, List[Json], bool] = (
            self.engine.snapshot(),
            self.vault.export(),
            self.pause.is_paused(),
        )
        if state is None:
            self._persist([])
        log_event(logger, "executor_started", pool_id=self.pool_id, db_path=self.db_path, resumed=state is not None)

    @classmethod
    def from_env(cls) -> "PoolExecutor":
        return cls(config=load_pool_config())

    def close(self) -> None:
        if self._writer_lock is not None:
            self._writer_lock.release()
            self._writer_lock = None

    # ----------------------------
    # Persistence
    # ----------------------------

    def _persist(self, events: List[PoolEvent]) -> None:
        state = self.engine.snapshot()
        vault_rows = self.vault.export()
        paused = self.pause.is_paused()
        self._store.commit(
            state,
            vault_rows,
            [e.to_json() for e in events],
            flags={"paused": "1" if paused else "0"},
        )
        self._committed = (state, vault_rows, paused)

    def _revert(self) -> None:
        state, vault_rows, paused = self._committed
        self.engine.restore(state)
        self.vault.restore(vault_rows)
        self.pause.set(paused)

    def _commit(self, op: str) -> None:
        """Persist the applied operation, or undo it in memory if the write fails."""
        events = list(self._journal)
        self._journal.clear()
        try:
            self._persist(events)
        except Exception as e:
            self._revert()
            log_event(logger, "commit_failed", pool_id=self.pool_id, op=op, error=f"{type(e).__name__}: {e}")
            raise
        for evt in events:
            self.event_bus.publish(evt)

    def _run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            self._journal.clear()
            out = fn(*args, **kwargs)
            self._commit(fn.__name__)
            return out

    # ----------------------------
    # Public accessors
    # ----------------------------

    def view(self) -> PoolView:
        return self.engine.view()

    def pool_json(self) -> Json:
        eng = self.engine
        out = eng.view().pool_json()
        out.update(
            {
                "stake_token": eng.stake_token,
                "reward_token": eng.reward_token,
                "paused": eng.is_paused(),
                "last_time_reward_applicable": eng.last_time_reward_applicable(),
                "reward_per_unit": str(eng.reward_per_unit()),
                "reward_for_duration": eng.reward_for_duration(),
                "available_reward_funding": eng.available_reward_funding(),
            }
        )
        return out

    def account_json(self, account: str) -> Json:
        out = self.engine.view().get_account(str(account)).to_json()
        out["reward_per_unit_paid"] = str(out["reward_per_unit_paid"])
        out["earned"] = self.engine.earned(str(account))
        out["wallet"] = {
            "stake": self.vault.balance_of(self.engine.stake_token, str(account)),
            "reward": self.vault.balance_of(self.engine.reward_token, str(account)),
        }
        return out

    def events(self, *, limit: int = 100, after_seq: int = 0) -> List[Json]:
        return self._store.events(limit=limit, after_seq=after_seq)

    def consume_nonce(self, account: str, nonce: int) -> bool:
        return self._store.consume_nonce(account, nonce)

    # ----------------------------
    # Operations
    # ----------------------------

    def stake(self, caller: str, amount: int) -> int:
        return self._run(self.engine.stake, caller, amount)

    def withdraw(self, caller: str, amount: int) -> int:
        return self._run(self.engine.withdraw, caller, amount)

    def claim(self, caller: str) -> int:
        return self._run(self.engine.claim, caller)

    def exit(self, caller: str) -> Json:
        return self._run(self.engine.exit, caller)

    def notify_reward_amount(self, caller: str, reward: int, *, pull_from_caller: bool = False) -> Json:
        return self._run(self.engine.notify_reward_amount, caller, reward, pull_from_caller=pull_from_caller)

    def set_rewards_duration(self, caller: str, duration: int) -> Json:
        return self._run(self.engine.set_rewards_duration, caller, duration)

    def recover_token(self, caller: str, token: str, amount: int) -> int:
        return self._run(self.engine.recover_token, caller, token, amount)

    def set_paused(self, caller: str, paused: bool) -> bool:
        return self._run(self.engine.set_paused, caller, paused)

    def credit_vault(self, token: str, holder: str, amount: int) -> int:
        """Mint into custody. Non-prod bootstrap only."""
        if (self.config.mode or "prod").strip().lower() == "prod":
            raise ExecutorError("vault credit is disabled in prod mode")
        with self._lock:
            bal = self.vault.credit(str(token), str(holder), int(amount))
            self._commit("credit_vault")
        log_event(logger, "vault_credited", token=str(token), holder=str(holder), amount=int(amount))
        return bal


def build_executor(cfg: Optional[PoolConfig] = None) -> PoolExecutor:
    """Build a PoolExecutor from an explicit config or, if omitted, from the environment.

    `rewardpool.api.app` calls this with no args in production.
    """
    return PoolExecutor(config=cfg or load_pool_config())
