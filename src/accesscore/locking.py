"""Reader/writer locks with a global acquisition order.

Every engine component owns one ``RWLock``. Locks carry a rank from
``LockRank``; a thread may acquire a lock only if it holds no lock of a
higher rank. Re-acquiring a lock the thread already holds is always allowed
(read inside write, read inside read, write inside write). Upgrading a
read lock to a write lock is not supported and raises ``LockOrderError``.

Usage::

    with catalog.lock.read():
        ...

    with ordered(catalog.lock, graph.lock, overlay.lock):
        ...  # write locks, taken in rank order
"""

from __future__ import annotations

import threading
from contextlib import ExitStack, contextmanager
from enum import IntEnum
from typing import Iterator

from .exceptions import LockOrderError


class LockRank(IntEnum):
    """Global lock order. Lower ranks are acquired first."""

    CATALOG = 0
    ROLES = 1
    GRAPH = 2
    ASSIGNMENTS = 3
    OVERLAY = 4
    TEMPLATES = 5
    AUDIT = 6


_held = threading.local()


def _held_locks() -> list[RWLock]:
    stack = getattr(_held, "stack", None)
    if stack is None:
        stack = []
        _held.stack = stack
    return stack


def held_ranks() -> tuple[int, ...]:
    """Ranks of the locks held by the calling thread, in acquisition order."""
    return tuple(lock.rank for lock in _held_locks())


class RWLock:
    """Writer-preferring reader/writer lock, re-entrant for its owner.

    Args:
        name: Component name, used in error messages.
        rank: Position in the global acquisition order.
    """

    def __init__(self, name: str, rank: int) -> None:
        self.name = name
        self.rank = int(rank)
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer: int | None = None
        self._write_depth = 0
        self._writers_waiting = 0
        self._local = threading.local()

    def __repr__(self) -> str:
        return f"RWLock(name={self.name!r}, rank={self.rank})"

    # ── bookkeeping ─────────────────────────────────────

    def _modes(self) -> list[str]:
        modes = getattr(self._local, "modes", None)
        if modes is None:
            modes = []
            self._local.modes = modes
        return modes

    def _check_order(self) -> None:
        for lock in _held_locks():
            if lock is not self and lock.rank > self.rank:
                raise LockOrderError(
                    f"Cannot acquire {self.name!r} (rank {self.rank}) while holding {lock.name!r} (rank {lock.rank})",
                    acquiring=self.name,
                    holding=lock.name,
                )

    # ── acquire / release ───────────────────────────────

    def acquire_read(self) -> None:
        me = threading.get_ident()
        modes = self._modes()
        if not modes:
            self._check_order()
        with self._cond:
            if self._writer == me:
                self._write_depth += 1
                modes.append("w")
            elif modes:
                # Already a reader on this thread; do not wait behind writers.
                self._readers += 1
                modes.append("r")
            else:
                while self._writer is not None or self._writers_waiting:
                    self._cond.wait()
                self._readers += 1
                modes.append("r")
        if len(modes) == 1:
            _held_locks().append(self)

    def acquire_write(self) -> None:
        me = threading.get_ident()
        modes = self._modes()
        if not modes:
            self._check_order()
        with self._cond:
            if self._writer == me:
                self._write_depth += 1
                modes.append("w")
            elif modes:
                raise LockOrderError(f"Cannot upgrade read lock on {self.name!r} to a write lock", lock=self.name)
            else:
                self._writers_waiting += 1
                try:
                    while self._writer is not None or self._readers:
                        self._cond.wait()
                finally:
                    self._writers_waiting -= 1
                self._writer = me
                self._write_depth = 1
                modes.append("w")
        if len(modes) == 1:
            _held_locks().append(self)

    def release(self) -> None:
        modes = self._modes()
        if not modes:
            raise RuntimeError(f"Release of unheld lock {self.name!r}")
        mode = modes.pop()
        with self._cond:
            if mode == "w":
                self._write_depth -= 1
                if self._write_depth == 0:
                    self._writer = None
                    self._cond.notify_all()
            else:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()
        if not modes:
            _held_locks().remove(self)

    # ── context managers ────────────────────────────────

    @contextmanager
    def read(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release()

    @contextmanager
    def write(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release()


@contextmanager
def ordered(*locks: RWLock, mode: str = "write") -> Iterator[None]:
    """Acquire several component locks in global rank order.

    Duplicate locks are acquired once. ``mode`` is ``"write"`` or ``"read"``.
    """
    if mode not in ("read", "write"):
        raise ValueError(f"Invalid lock mode: {mode}")
    unique = {id(lock): lock for lock in locks}.values()
    with ExitStack() as stack:
        for lock in sorted(unique, key=lambda lk: lk.rank):
            stack.enter_context(lock.write() if mode == "write" else lock.read())
        yield


__all__ = [
    "LockRank",
    "RWLock",
    "held_ranks",
    "ordered",
]
