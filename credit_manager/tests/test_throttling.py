from concurrent.futures import ThreadPoolExecutor

import pytest

from credit_manager.access_control.throttling import InMemoryAttemptStore, SensitiveOperationThrottle
from credit_manager.exceptions import RateLimitExceededError


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def throttle(clock):
    return SensitiveOperationThrottle(InMemoryAttemptStore(), max_attempts=3, window_seconds=900, clock=clock)


def test_blocks_after_max_attempts(throttle, clock):
    key = throttle.make_key("10.0.0.1", 7)
    assert [throttle.check(key) for _ in range(3)] == [2, 1, 0]

    clock.advance(60)
    with pytest.raises(RateLimitExceededError) as exc_info:
        throttle.check(key)
    assert exc_info.value.retry_after == 841 # 900 - 60 + 1


def test_window_slides_and_old_attempts_are_pruned(throttle, clock):
    key = throttle.make_key("10.0.0.1", 7)
    throttle.check(key)
    clock.advance(600)
    throttle.check(key)
    throttle.check(key)

    clock.advance(301) # first attempt is now outside the window
    assert throttle.check(key) == 0
    assert len(throttle.store.get(key)) == 3


def test_keys_are_independent(throttle):
    for _ in range(3):
        throttle.check(throttle.make_key("10.0.0.1", 1))
    assert throttle.check(throttle.make_key("10.0.0.1", 2)) == 2
    assert throttle.check(throttle.make_key("10.0.0.2", 1)) == 2


def test_per_call_limit_override(throttle):
    key = "k"
    throttle.check(key, max_attempts=1)
    with pytest.raises(RateLimitExceededError):
        throttle.check(key, max_attempts=1)


def test_reset_clears_key(throttle):
    key = "k"
    for _ in range(3):
        throttle.check(key)
    throttle.reset(key)
    assert throttle.check(key) == 2


def test_concurrent_attempts_are_not_undercounted(clock):
    throttle = SensitiveOperationThrottle(InMemoryAttemptStore(), max_attempts=5, window_seconds=900, clock=clock)

    def attempt(_):
        try:
            throttle.check("shared-key")
            return True
        except RateLimitExceededError:
            return False

    with ThreadPoolExecutor(max_workers=8) as executor:
        outcomes = list(executor.map(attempt, range(40)))

    assert outcomes.count(True) == 5
    assert len(throttle.store.get("shared-key")) == 5


def test_make_key_handles_anonymous():
    assert SensitiveOperationThrottle.make_key(None, None) == "unknown:anonymous"
