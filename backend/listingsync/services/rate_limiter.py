"""
Rate Limiter - fixed-window request counter per user

Windows are aligned to multiples of the window length, so every backend
agrees on when a window starts and ends. Redis is used when REDIS_URL is
configured; any Redis failure falls back to the in-process store for that
call.
"""
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import redis
from flask import current_app

from ..utils.logger import get_logger

logger = get_logger('rate_limiter')


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # epoch seconds
    retry_after: int = 0
    backend: str = 'memory'

    def headers(self) -> Dict[str, str]:
        return {
            'X-RateLimit-Limit': str(self.limit),
            'X-RateLimit-Remaining': str(self.remaining),
            'X-RateLimit-Reset': str(self.reset_at),
        }


def window_bounds(now: float, window_seconds: int) -> Tuple[int, int]:
    start = int(now // window_seconds) * window_seconds
    return start, start + window_seconds


class CounterStore:
    """Backend interface: count one hit in the window containing now"""

    name = 'abstract'

    def increment(self, key: str, window_seconds: int, now: float) -> Tuple[int, int]:
        """Returns (count_in_window, reset_at_epoch_seconds)"""
        raise NotImplementedError


class MemoryCounterStore(CounterStore):
    """Lock-guarded dict; a background sweep drops finished windows.

    Per-process only: with several workers each keeps its own counts.
    """

    name = 'memory'

    def __init__(self, clock: Callable[[], float] = time.time, sweep_interval: float = 300):
        self.clock = clock
        self.sweep_interval = sweep_interval
        self._counters: Dict[str, List[int]] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def increment(self, key: str, window_seconds: int, now: float) -> Tuple[int, int]:
        _, reset_at = window_bounds(now, window_seconds)
        with self._lock:
            entry = self._counters.get(key)
            if entry is None or now >= entry[1]:
                entry = [0, reset_at]
                self._counters[key] = entry
            entry[0] += 1
            return entry[0], entry[1]

    def sweep(self, now: Optional[float] = None) -> int:
        """Drop counters whose window has ended; returns how many were dropped"""
        now = self.clock() if now is None else now
        with self._lock:
            expired = [key for key, (_, reset_at) in self._counters.items() if now >= reset_at]
            for key in expired:
                del self._counters[key]
        if expired:
            logger.debug(f"[RateLimiter] Swept {len(expired)} expired counters")
        return len(expired)

    def __len__(self):
        with self._lock:
            return len(self._counters)

    def start_sweeper(self) -> None:
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name='ratelimit-sweeper', daemon=True)
        self._sweeper.start()

    def stop_sweeper(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1)
            self._sweeper = None

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval):
            self.sweep()


class RedisCounterStore(CounterStore):
    """Shared counter: INCR plus EXPIRE in one MULTI/EXEC per hit"""

    name = 'redis'

    def __init__(self, client: redis.Redis, prefix: str = 'ratelimit:dashboard'):
        self.client = client
        self.prefix = prefix

    def increment(self, key: str, window_seconds: int, now: float) -> Tuple[int, int]:
        window_start, reset_at = window_bounds(now, window_seconds)
        redis_key = f'{self.prefix}:{key}:{window_start}'
        pipe = self.client.pipeline(transaction=True)
        pipe.incr(redis_key)
        # One extra second so the key outlives its window under clock skew
        pipe.expire(redis_key, window_seconds + 1)
        count, _ = pipe.execute()
        return int(count), reset_at


class RateLimiter:
    """
    Example:
        >>> limiter = RateLimiter(MemoryCounterStore(), limit=100, window_seconds=900)
        >>> result = limiter.check('user-123')
        >>> result.allowed, result.remaining
        (True, 99)
    """

    def __init__(self, store: Optional[CounterStore] = None, fallback: Optional[MemoryCounterStore] = None,
                 limit: int = 100, window_seconds: int = 900, clock: Callable[[], float] = time.time):
        self.fallback = fallback or MemoryCounterStore(clock=clock)
        self.store = store or self.fallback
        self.limit = limit
        self.window_seconds = window_seconds
        self.clock = clock

    def check(self, key: str) -> RateLimitResult:
        """Count one request for key and say whether it is admitted"""
        now = self.clock()
        backend = self.store.name
        try:
            count, reset_at = self.store.increment(key, self.window_seconds, now)
        except (redis.RedisError, OSError) as e:
            if self.store is self.fallback:
                raise
            logger.warning(f"[RateLimiter] {self.store.name} backend failed, using memory: {e}")
            count, reset_at = self.fallback.increment(key, self.window_seconds, now)
            backend = self.fallback.name

        allowed = count <= self.limit
        result = RateLimitResult(
            allowed=allowed,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset_at=int(reset_at),
            retry_after=0 if allowed else max(1, int(math.ceil(reset_at - now))),
            backend=backend,
        )
        if not allowed:
            logger.info(f"[RateLimiter] Rejected {key}: {count}/{self.limit}, retry in {result.retry_after}s")
        return result


_rate_limiter: Optional[RateLimiter] = None
_rate_limiter_lock = threading.Lock()


def build_rate_limiter(config) -> RateLimiter:
    """Construct a limiter from app config; Redis when REDIS_URL is set"""
    fallback = MemoryCounterStore(sweep_interval=config.get('RATE_LIMIT_SWEEP_INTERVAL', 300))
    fallback.start_sweeper()
    store: CounterStore = fallback
    redis_url = config.get('REDIS_URL')
    if redis_url:
        client = redis.Redis.from_url(redis_url, socket_timeout=2, socket_connect_timeout=2)
        store = RedisCounterStore(client, prefix=config.get('RATE_LIMIT_PREFIX', 'ratelimit:dashboard'))
        logger.info("[RateLimiter] Using Redis counter store")
    else:
        logger.info("[RateLimiter] REDIS_URL not set, using in-memory counter store")
    return RateLimiter(
        store=store,
        fallback=fallback,
        limit=config.get('RATE_LIMIT_REQUESTS', 100),
        window_seconds=config.get('RATE_LIMIT_WINDOW_SECONDS', 900),
    )


def get_rate_limiter() -> RateLimiter:
    """Get the global rate limiter (singleton), built on first use"""
    global _rate_limiter
    if _rate_limiter is None:
        with _rate_limiter_lock:
            if _rate_limiter is None:
                _rate_limiter = build_rate_limiter(current_app.config)
    return _rate_limiter


def reset_rate_limiter(limiter: Optional[RateLimiter] = None) -> None:
    """Replace (or drop) the global limiter; used at app creation and in tests"""
    global _rate_limiter
    with _rate_limiter_lock:
        if _rate_limiter is not None and _rate_limiter is not limiter:
            _rate_limiter.fallback.stop_sweeper()
        _rate_limiter = limiter
