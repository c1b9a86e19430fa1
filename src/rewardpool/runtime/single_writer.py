from __future__ import annotations

import fcntl
import os
import threading
from contextlib import contextmanager
from typing import IO, Iterator, Optional

from rewardpool.runtime.errors import ReentrantCall


class SingleWriterError(RuntimeError):
    pass


class SingleWriterLock:
    """Advisory flock making one process the only writer of a pool database.

    The holder writes its pid into the lock file so a refused second process
    can say who owns the pool.
    """

    def __init__(self, path: str):
        self.path = path
        self._fd: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        fd = open(self.path, "a+")
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            fd.seek(0)
            holder = fd.read().strip() or "unknown"
            fd.close()
            raise SingleWriterError(f"single-writer lock already held: {self.path} (pid {holder})") from e
        fd.seek(0)
        fd.truncate()
        fd.write(str(os.getpid()))
        fd.flush()
        self._fd = fd

    def release(self) -> None:
        if self._fd:
            try:
                fcntl.flock(self._fd, fcntl.LOCK_UN)
            finally:
                self._fd.close()
                self._fd = None


class OperationGuard:
    """Serial execution + reentrancy rejection for engine entry points.

    - Calls from other threads wait for the in-flight operation (serial order).
    - A call from the thread that is already inside an operation is refused
      with ReentrantCall instead of recursing.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._owner: Optional[int] = None
        self._op: str = ""

    def _held_by_me(self) -> bool:
        return self._owner == threading.get_ident()

    @contextmanager
    def enter(self, op: str) -> Iterator[None]:
        if self._held_by_me():
            raise ReentrantCall(details={"op": str(op), "in_flight": self._op})
        with self._lock:
            self._owner = threading.get_ident()
            self._op = str(op)
            try:
                yield
            finally:
                self._owner = None
                self._op = ""

    @contextmanager
    def read(self) -> Iterator[None]:
        """Consistent read: waits for other threads, never blocks the owning thread."""
        if self._held_by_me():
            yield
            return
        with self._lock:
            yield
