# src/rewardpool/runtime/collaborators.py
from __future__ import annotations

"""External collaborators consumed by the staking engine.

The engine only depends on the Protocol classes below. The concrete classes
are the in-process defaults used by the executor, the API and the tests:

  - InMemoryTokenVault: token custody with all-or-nothing batch settlement
  - SystemClock / ManualClock: timestamp sources
  - AdminSet: administrator authorization
  - PauseSwitch: pause gate
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

Json = Dict[str, Any]

DIRECTION_IN = "in"
DIRECTION_OUT = "out"


@dataclass(frozen=True, slots=True)
class Transfer:
    """One leg of custody movement between the pool and a counterparty."""

    token: str
    direction: str  # "in" (counterparty -> pool) | "out" (pool -> counterparty)
    counterparty: str
    amount: int

    @classmethod
    def inbound(cls, token: str, sender: str, amount: int) -> "Transfer":
        return cls(token=str(token), direction=DIRECTION_IN, counterparty=str(sender), amount=int(amount))

    @classmethod
    def outbound(cls, token: str, recipient: str, amount: int) -> "Transfer":
        return cls(token=str(token), direction=DIRECTION_OUT, counterparty=str(recipient), amount=int(amount))

    def to_json(self) -> Json:
        return {
            "token": self.token,
            "direction": self.direction,
            "counterparty": self.counterparty,
            "amount": int(self.amount),
        }


class TransferError(RuntimeError):
    """Raised by a transfer agent when a batch cannot be settled."""


class TransferAgent(Protocol):
    def settle(self, transfers: Sequence[Transfer], *, pool_account: str) -> bool: ...

    def balance_of(self, token: str, holder: str) -> int: ...


class Clock(Protocol):
    def now(self) -> int: ...


class Authorizer(Protocol):
    def is_admin(self, caller: str) -> bool: ...


class PauseGate(Protocol):
    def is_paused(self) -> bool: ...


TransferHook = Callable[[Transfer], None]


class InMemoryTokenVault:
    """Token custody keyed by (token, holder).

    settle() validates the whole batch against a scratch copy of the balances
    and only then publishes it, so a batch either moves completely or not at
    all. Hooks run like a receiver callback on a token transfer, after
    validation and before publication: an exception from a hook propagates to
    the caller and the batch is discarded.
    """

    def __init__(self, balances: Optional[Dict[Tuple[str, str], int]] = None) -> None:
        self._balances: Dict[Tuple[str, str], int] = dict(balances or {})
        self._hooks: List[TransferHook] = []
        self._frozen: set[str] = set()

    def balance_of(self, token: str, holder: str) -> int:
        return int(self._balances.get((str(token), str(holder)), 0))

    def credit(self, token: str, holder: str, amount: int) -> int:
        amt = int(amount)
        if amt < 0:
            raise ValueError("credit amount must be >= 0")
        key = (str(token), str(holder))
        self._balances[key] = int(self._balances.get(key, 0)) + amt
        return self._balances[key]

    def add_hook(self, hook: TransferHook) -> None:
        self._hooks.append(hook)

    def clear_hooks(self) -> None:
        self._hooks.clear()

    def freeze(self, holder: str) -> None:
        """Refuse every transfer touching `holder` (test double for a failing transfer)."""
        self._frozen.add(str(holder))

    def unfreeze(self, holder: str) -> None:
        self._frozen.discard(str(holder))

    def _apply(self, scratch: Dict[Tuple[str, str], int], tr: Transfer, pool_account: str) -> None:
        if tr.amount <= 0:
            raise TransferError(f"non_positive_amount:{tr.amount}")
        if tr.counterparty in self._frozen or pool_account in self._frozen:
            raise TransferError(f"holder_frozen:{tr.counterparty}")
        if tr.direction == DIRECTION_IN:
            src, dst = tr.counterparty, pool_account
        elif tr.direction == DIRECTION_OUT:
            src, dst = pool_account, tr.counterparty
        else:
            raise TransferError(f"bad_direction:{tr.direction}")

        src_key = (tr.token, src)
        have = int(scratch.get(src_key, 0))
        if have < tr.amount:
            raise TransferError(f"insufficient_funds:{tr.token}:{src}:{have}<{tr.amount}")
        scratch[src_key] = have - tr.amount
        dst_key = (tr.token, dst)
        scratch[dst_key] = int(scratch.get(dst_key, 0)) + tr.amount

    def settle(self, transfers: Sequence[Transfer], *, pool_account: str) -> bool:
        batch = list(transfers)
        if not batch:
            return True
        scratch = dict(self._balances)
        for tr in batch:
            self._apply(scratch, tr, str(pool_account))
        for tr in batch:
            for hook in list(self._hooks):
                hook(tr)
        self._balances = scratch
        return True

    def export(self) -> List[Json]:
        out: List[Json] = []
        for (token, holder), amt in sorted(self._balances.items()):
            if int(amt) != 0:
                out.append({"token": token, "holder": holder, "amount": int(amt)})
        return out

    def restore(self, rows: Iterable[Any]) -> None:
        """Replace every balance with an export() image. Hooks and freezes stay."""
        self._balances = dict(type(self).load(rows)._balances)

    @classmethod
    def load(cls, rows: Iterable[Any]) -> "InMemoryTokenVault":
        balances: Dict[Tuple[str, str], int] = {}
        for r in rows or []:
            if not isinstance(r, dict):
                continue
            token = str(r.get("token") or "")
            holder = str(r.get("holder") or "")
            if not token or not holder:
                continue
            balances[(token, holder)] = int(r.get("amount") or 0)
        return cls(balances)


class SystemClock:
    """Wall-clock seconds."""

    def now(self) -> int:
        return int(time.time())


class ManualClock:
    def __init__(self, start: int = 0) -> None:
        self._t = int(start)

    def now(self) -> int:
        return self._t

    def set(self, t: int) -> None:
        self._t = int(t)

    def advance(self, dt: int) -> int:
        if int(dt) < 0:
            raise ValueError("ManualClock only moves forward")
        self._t += int(dt)
        return self._t


class AdminSet:
    def __init__(self, admins: Iterable[str] = ()) -> None:
        self._admins = {str(a).strip() for a in admins if str(a).strip()}

    def is_admin(self, caller: str) -> bool:
        return str(caller or "").strip() in self._admins


class PauseSwitch:
    def __init__(self, paused: bool = False) -> None:
        self._paused = bool(paused)

    def is_paused(self) -> bool:
        return self._paused

    def set(self, paused: bool) -> bool:
        """Returns True when the value changed."""
        changed = bool(paused) != self._paused
        self._paused = bool(paused)
        return changed


__all__ = [
    "AdminSet",
    "Authorizer",
    "Clock",
    "InMemoryTokenVault",
    "ManualClock",
    "PauseGate",
    "PauseSwitch",
    "SystemClock",
    "Transfer",
    "TransferAgent",
    "TransferError",
    "TransferHook",
]
