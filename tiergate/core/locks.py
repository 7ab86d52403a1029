"""
Per-user serialization for ledger writes.

Commits, weekly rollovers and generation claims for one user run under a
re-entrant lock so a caller may hold it across evaluate + commit. Database
row locks and conditional updates still guard against other processes.

Locks live only while some caller holds a reference, so the registry stays
bounded by the number of users with work in flight.
"""

import threading
import weakref
from contextlib import contextmanager

_registry_lock = threading.Lock()
_user_locks: "weakref.WeakValueDictionary[str, threading.RLock]" = weakref.WeakValueDictionary()


def _lock_for(user_id: str) -> threading.RLock:
    with _registry_lock:
        lock = _user_locks.get(user_id)
        if lock is None:
            lock = threading.RLock()
            _user_locks[user_id] = lock
        return lock


@contextmanager
def user_lock(user_id: str):
    """Hold the per-user lock for the duration of the block."""
    lock = _lock_for(user_id)
    with lock:
        yield


def registered_lock_count() -> int:
    with _registry_lock:
        return len(_user_locks)


def clear_user_locks() -> None:
    """Drop all registered locks (testing only)."""
    with _registry_lock:
        _user_locks.clear()
