"""
Per-key locks for serializing read-modify-write cycles on a single subscription.

Locks are created on first use and dropped when the last holder releases them, so the
registry only holds entries for keys currently in flight.
"""

from contextlib import contextmanager
import threading
from typing import Dict, Hashable, Iterator, List


class KeyedLock:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, List] = {}  # key -> [lock, holders]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


_locks = KeyedLock()


def get_subscription_locks() -> KeyedLock:
    """Process-wide lock registry shared by webhooks, admin actions and sweeps."""
    return _locks
