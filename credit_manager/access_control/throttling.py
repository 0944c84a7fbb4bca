"""Sliding-window throttles for login/registration and sensitive operations.

The attempt store is passed in explicitly and the clock is injectable, so a
throttle can be exercised deterministically in tests.
"""
import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from credit_manager.concurrency import KeyedLockRegistry
from credit_manager.config import Config
from credit_manager.exceptions import RateLimitExceededError

logger = logging.getLogger("credit_manager.security")


class InMemoryAttemptStore:
    """Process-wide attempt timestamps keyed by ip+actor."""

    def __init__(self):
        self._attempts: Dict[str, List[float]] = {}
        self._guard = threading.Lock()

    def get(self, key: str) -> List[float]:
        with self._guard:
            return list(self._attempts.get(key, []))

    def put(self, key: str, timestamps: List[float]):
        with self._guard:
            if timestamps:
                self._attempts[key] = list(timestamps)
            else:
                self._attempts.pop(key, None)

    def clear(self):
        with self._guard:
            self._attempts.clear()


class SensitiveOperationThrottle:
    def __init__(
        self,
        store: InMemoryAttemptStore,
        max_attempts: int = Config.SENSITIVE_OPERATION_MAX_ATTEMPTS,
        window_seconds: int = Config.SENSITIVE_OPERATION_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.clock = clock
        self._locks = KeyedLockRegistry()

    @staticmethod
    def make_key(ip_address: Optional[str], actor_id: Optional[int]) -> str:
        return f"{ip_address or 'unknown'}:{actor_id if actor_id is not None else 'anonymous'}"

    def check(self, key: str, max_attempts: Optional[int] = None) -> int:
        """Record an attempt for `key`. Returns attempts left in the window.

        Raises RateLimitExceededError (nothing recorded) once the window is full.
        """
        limit = max_attempts or self.max_attempts
        with self._locks.hold(key):
            now = self.clock()
            window_start = now - self.window_seconds
            # Lazy pruning: drop timestamps that fell out of the window
            recent = [ts for ts in self.store.get(key) if ts > window_start]

            if len(recent) >= limit:
                retry_after = int(max(0, recent[0] + self.window_seconds - now)) + 1
                self.store.put(key, recent)
                logger.warning(f"Sensitive operation rate limit hit for key={key} (limit {limit})")
                raise RateLimitExceededError(
                    "Too many attempts for sensitive operation. Please try again later.",
                    retry_after=retry_after,
                )

            recent.append(now)
            self.store.put(key, recent)
            return limit - len(recent)

    def reset(self, key: str):
        with self._locks.hold(key):
            self.store.put(key, [])


attempt_store = InMemoryAttemptStore()
sensitive_operation_throttle = SensitiveOperationThrottle(attempt_store)

# Login and registration are limited per IP, separately from sensitive operations
auth_attempt_store = InMemoryAttemptStore()
auth_throttle = SensitiveOperationThrottle(
    auth_attempt_store,
    max_attempts=Config.AUTH_RATE_LIMIT_MAX_ATTEMPTS,
    window_seconds=Config.AUTH_RATE_LIMIT_WINDOW_SECONDS,
)
