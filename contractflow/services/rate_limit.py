"""
Fixed-window rate limiter over a shared counter store.

Time is cut into windows of `window_ms`; each (key, window) pair owns one
counter that expires with its window. Bursts straddling a window boundary
can admit up to 2x the limit.
"""
import heapq
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class CounterStore(Protocol):
    """The two Redis commands the limiter needs. `redis.Redis` satisfies it."""

    def incr(self, name: str) -> int: ...

    def pexpire(self, name: str, time: int) -> bool: ...


@dataclass(frozen=True)
class RateLimitResult:
    ok: bool
    limit: int
    remaining: int
    reset_ms: int


class InMemoryCounterStore:
    """
    Process-local counters with expiry, used when no Redis URL is configured.

    Expired counters are evicted on every `incr`, so the store holds at most
    the counters of the live windows.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._counters: Dict[str, Tuple[int, Optional[float]]] = {}
        self._expiry_heap: List[Tuple[float, str]] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _evict_expired(self, now_ms: float) -> None:
        while self._expiry_heap and self._expiry_heap[0][0] <= now_ms:
            expires_at, name = heapq.heappop(self._expiry_heap)
            # A later pexpire may have moved the deadline; only the current one evicts
            entry = self._counters.get(name)
            if entry is not None and entry[1] == expires_at:
                del self._counters[name]

    def incr(self, name: str) -> int:
        with self._lock:
            self._evict_expired(self._now_ms())
            count, expires_at = self._counters.get(name, (0, None))
            count += 1
            self._counters[name] = (count, expires_at)
            return count

    def pexpire(self, name: str, time: int) -> bool:
        with self._lock:
            if name not in self._counters:
                return False
            count, _ = self._counters[name]
            expires_at = self._now_ms() + time
            self._counters[name] = (count, expires_at)
            heapq.heappush(self._expiry_heap, (expires_at, name))
            return True


class RateLimiter:
    def __init__(self, store: CounterStore, clock: Callable[[], float] = time.time):
        self.store = store
        self._clock = clock

    def allow(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        """
        Count one hit against `key` and report whether it is admitted.

        Store failures admit the request.
        """
        now_ms = int(self._clock() * 1000)
        window_id = now_ms // window_ms
        reset_ms = (window_id + 1) * window_ms - now_ms
        store_key = f"ratelimit:{key}:{window_id}"

        try:
            count = self.store.incr(store_key)
            if count == 1:
                self.store.pexpire(store_key, window_ms)
        except Exception as e:
            logger.warning("Rate limit store unavailable (key=%s): %s", key, e)
            return RateLimitResult(ok=True, limit=limit, remaining=limit, reset_ms=reset_ms)

        return RateLimitResult(
            ok=count <= limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_ms=reset_ms,
        )


def retry_after_seconds(result: RateLimitResult) -> int:
    return max(0, math.ceil(result.reset_ms / 1000))


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    return {
        "x-ratelimit-limit": str(result.limit),
        "x-ratelimit-remaining": str(result.remaining),
        "x-ratelimit-reset": str(retry_after_seconds(result)),
    }
