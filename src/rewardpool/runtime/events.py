from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Callable, ClassVar, Deque, Dict, List

Json = Dict[str, Any]


@dataclass(frozen=True, slots=True)
class PoolEvent:
    name: ClassVar[str] = "pool_event"

    def to_json(self) -> Json:
        out: Json = {"event": self.name}
        out.update(asdict(self))
        return out


@dataclass(frozen=True, slots=True)
class Staked(PoolEvent):
    name: ClassVar[str] = "Staked"
    account: str
    amount: int


@dataclass(frozen=True, slots=True)
class Withdrawn(PoolEvent):
    name: ClassVar[str] = "Withdrawn"
    account: str
    amount: int


@dataclass(frozen=True, slots=True)
class RewardPaid(PoolEvent):
    name: ClassVar[str] = "RewardPaid"
    account: str
    amount: int


@dataclass(frozen=True, slots=True)
class RewardAdded(PoolEvent):
    name: ClassVar[str] = "RewardAdded"
    reward: int


@dataclass(frozen=True, slots=True)
class RewardsDurationUpdated(PoolEvent):
    name: ClassVar[str] = "RewardsDurationUpdated"
    duration: int


@dataclass(frozen=True, slots=True)
class Recovered(PoolEvent):
    name: ClassVar[str] = "Recovered"
    token: str
    amount: int


@dataclass(frozen=True, slots=True)
class PauseChanged(PoolEvent):
    name: ClassVar[str] = "PauseChanged"
    paused: bool


Subscriber = Callable[[PoolEvent], None]

# Recent events kept in memory; the durable record is the SQLite journal.
DEFAULT_HISTORY_LIMIT = 1024


class EventBus:
    """Synchronous fan-out of committed pool events.

    Events are published only after an operation has fully applied, so a
    subscriber never sees an event for a rolled-back call. `history` holds only
    the most recent `history_limit` events.
    """

    def __init__(self, *, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._subs: List[Subscriber] = []
        self._history: Deque[PoolEvent] = deque(maxlen=max(int(history_limit), 0))

    def subscribe(self, fn: Subscriber) -> None:
        self._subs.append(fn)

    def publish(self, evt: PoolEvent) -> None:
        self._history.append(evt)
        for fn in list(self._subs):
            fn(evt)

    @property
    def history(self) -> List[PoolEvent]:
        return list(self._history)


__all__ = [
    "DEFAULT_HISTORY_LIMIT",
    "EventBus",
    "PauseChanged",
    "PoolEvent",
    "Recovered",
    "RewardAdded",
    "RewardPaid",
    "RewardsDurationUpdated",
    "Staked",
    "Subscriber",
    "Withdrawn",
]
