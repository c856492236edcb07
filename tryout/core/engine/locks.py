"""
Per-session locks.

Operations on one session are serialized inside a process; operations on
different sessions never contend. Cross-process ordering is the database's
job (status compare-and-swap).
"""
import threading
import weakref
from contextlib import contextmanager
from typing import Iterator


class _SessionLock:
    """Re-entrant lock wrapper; weak-referenceable so idle entries disappear."""

    __slots__ = ("rlock", "__weakref__")

    def __init__(self) -> None:
        self.rlock = threading.RLock()


class SessionLockRegistry:
    """Hands out one re-entrant lock per session id.

    Entries are held weakly: a lock lives as long as some caller is holding
    or waiting on it.
    """

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[int, _SessionLock]" = (
            weakref.WeakValueDictionary()
        )
        self._guard = threading.Lock()

    def _lock_for(self, session_id: int) -> _SessionLock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = _SessionLock()
                self._locks[session_id] = lock
            return lock

    @contextmanager
    def hold(self, session_id: int) -> Iterator[None]:
        lock = self._lock_for(session_id)
        with lock.rlock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Process-wide registry shared by every controller instance
session_locks = SessionLockRegistry()
