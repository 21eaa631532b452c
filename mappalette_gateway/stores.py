"""
Counter stores backing the rate limiter.

A store keeps one fixed window per client key: a counter and the time the
window started. Windows reset as a whole once they elapse.
"""
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis

from mappalette_gateway.circuit_breaker import CircuitBreaker, CircuitBreakerOpen
from mappalette_gateway.config import (
    FAIL_MODE,
    RATE_LIMIT_STORE,
    REDIS_DB,
    REDIS_HOST,
    REDIS_PORT,
    CounterStoreKind,
    FailMode,
)
from mappalette_gateway.errors import StoreUnavailable
from mappalette_gateway.metrics import record_store_error
from mappalette_gateway.redis_client import get_redis_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowState:
    """Counter value after a hit and the epoch second the window resets."""

    count: int
    reset_at: float


class CounterStore(ABC):
    """Base class for rate-limit counter stores."""

    @abstractmethod
    def increment(self, key: str, window_ms: int) -> WindowState:
        """
        Count one hit for key, starting a new window first if the current
        one has elapsed.
        """

    @abstractmethod
    def decrement(self, key: str):
        """Refund one hit. Counters never drop below zero."""

    @abstractmethod
    def reset(self, key: str):
        """Forget the window for key."""


@dataclass
class Bucket:
    count: int
    window_start: float
    window: float

    def expired(self, now: float) -> bool:
        return now - self.window_start >= self.window


class MemoryCounterStore(CounterStore):
    """
    In-process store. State lives as long as the process and is not shared
    between workers.

    Expired windows are swept at most once per window, so clients that never
    come back do not stay in memory.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._buckets: Dict[str, Bucket] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def _sweep(self, now: float):
        expired = [key for key, bucket in self._buckets.items() if bucket.expired(now)]
        for key in expired:
            del self._buckets[key]
        self._last_sweep = now
        if expired:
            logger.debug(f"Swept {len(expired)} expired rate-limit windows")

    def increment(self, key: str, window_ms: int) -> WindowState:
        window = window_ms / 1000
        with self._lock:
            now = self._clock()
            if now - self._last_sweep >= window:
                self._sweep(now)
            bucket = self._buckets.get(key)
            if bucket is None or bucket.expired(now):
                bucket = Bucket(count=0, window_start=now, window=window)
                self._buckets[key] = bucket
            bucket.count += 1
            return WindowState(count=bucket.count, reset_at=bucket.window_start + window)

    def decrement(self, key: str):
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is not None and bucket.count > 0:
                bucket.count -= 1

    def reset(self, key: str):
        with self._lock:
            self._buckets.pop(key, None)

    def __len__(self) -> int:
        return len(self._buckets)


# Refund a hit only while the window still exists and is above zero
DECREMENT_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current > 0 then
  return redis.call('DECR', KEYS[1])
end
return 0
"""


class RedisCounterStore(CounterStore):
    """
    Fixed-window counters in Redis, shared by every gateway instance.

    The first hit of a window creates the key and gives it a TTL equal to the
    window, so Redis expiry is the window reset.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        prefix: str = "ratelimit:",
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis_client
        self.prefix = prefix
        self._clock = clock

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def increment(self, key: str, window_ms: int) -> WindowState:
        redis_key = self._key(key)
        now = self._clock()

        pipe = self.redis.pipeline()
        pipe.incr(redis_key)
        pipe.pttl(redis_key)
        count, ttl_ms = pipe.execute()

        if ttl_ms is None or ttl_ms < 0:
            # New window (or a key left without expiry)
            self.redis.pexpire(redis_key, window_ms)
            ttl_ms = window_ms

        return WindowState(count=int(count), reset_at=now + ttl_ms / 1000)

    def decrement(self, key: str):
        self.redis.eval(DECREMENT_SCRIPT, 1, self._key(key))

    def reset(self, key: str):
        self.redis.delete(self._key(key))


class FailoverCounterStore(CounterStore):
    """
    Primary store behind a circuit breaker.

    While the primary is failing, hits go to an in-process fallback store
    (fail open) or are refused with StoreUnavailable (fail closed).
    """

    def __init__(
        self,
        primary: CounterStore,
        fallback: Optional[CounterStore] = None,
        breaker: Optional[CircuitBreaker] = None,
        fail_mode: FailMode = FailMode.OPEN,
    ):
        self.primary = primary
        self.fallback = fallback or MemoryCounterStore()
        self.breaker = breaker or CircuitBreaker(expected_exceptions=(redis.RedisError,))
        self.fail_mode = fail_mode

    def _degraded(self, operation: str, error: Exception) -> CounterStore:
        record_store_error(operation)
        if self.fail_mode == FailMode.CLOSED:
            logger.error(f"Counter store unavailable during {operation}: {error}")
            raise StoreUnavailable("Rate limiter temporarily unavailable") from error
        logger.warning(f"Counter store unavailable during {operation}, using in-process counters: {error}")
        return self.fallback

    def increment(self, key: str, window_ms: int) -> WindowState:
        try:
            return self.breaker.call(self.primary.increment, key, window_ms)
        except (CircuitBreakerOpen, redis.RedisError) as e:
            return self._degraded("increment", e).increment(key, window_ms)

    def decrement(self, key: str):
        try:
            self.breaker.call(self.primary.decrement, key)
        except (CircuitBreakerOpen, redis.RedisError) as e:
            self._degraded("decrement", e).decrement(key)

    def reset(self, key: str):
        try:
            self.breaker.call(self.primary.reset, key)
        except (CircuitBreakerOpen, redis.RedisError) as e:
            self._degraded("reset", e).reset(key)


def build_store() -> CounterStore:
    """Create the counter store selected by RATE_LIMIT_STORE."""
    if RATE_LIMIT_STORE == CounterStoreKind.REDIS:
        primary = RedisCounterStore(get_redis_client(REDIS_HOST, REDIS_PORT, REDIS_DB))
        return FailoverCounterStore(primary, fail_mode=FAIL_MODE)
    return MemoryCounterStore()
