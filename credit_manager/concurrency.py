import threading
from contextlib import contextmanager
from typing import Dict, Hashable


class KeyedLockRegistry:
    """One mutex per key (application id, user id, throttle key).

    Locks are created on first use and kept for the process lifetime.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.RLock] = {}

    def lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable):
        lock = self.lock_for(key)
        with lock:
            yield


application_locks = KeyedLockRegistry()
user_locks = KeyedLockRegistry()
