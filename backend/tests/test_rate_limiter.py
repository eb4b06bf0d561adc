"""
Rate Limiter Tests
"""
import fakeredis
import pytest
import redis

from listingsync.services.rate_limiter import (
    CounterStore, MemoryCounterStore, RateLimiter, RedisCounterStore,
    build_rate_limiter, window_bounds,
)


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class BrokenRedisStore(CounterStore):
    name = 'redis'

    def __init__(self):
        self.calls = 0

    def increment(self, key, window_seconds, now):
        self.calls += 1
        raise redis.ConnectionError('connection refused')


@pytest.fixture
def clock():
    # aligned to a 60s window boundary
    return FakeClock(now=1_000_020.0)


def _limiter(store, clock, limit=3, window=60):
    return RateLimiter(store=store, fallback=MemoryCounterStore(clock=clock),
                       limit=limit, window_seconds=window, clock=clock)


class TestWindow:

    def test_windows_are_aligned(self):
        assert window_bounds(1_000_019.0, 60) == (999_960, 1_000_020)
        assert window_bounds(1_000_020.0, 60) == (1_000_020, 1_000_080)
        assert window_bounds(1_000_021.5, 60) == (1_000_020, 1_000_080)


class TestMemoryStore:

    def test_limit_plus_one_is_rejected(self, clock):
        limiter = _limiter(MemoryCounterStore(clock=clock), clock)

        results = [limiter.check('user-1') for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        rejected = results[-1]
        assert rejected.retry_after == 60
        assert rejected.reset_at == 1_000_080
        assert rejected.backend == 'memory'

    def test_headers(self, clock):
        limiter = _limiter(MemoryCounterStore(clock=clock), clock)

        headers = limiter.check('user-1').headers()

        assert headers == {
            'X-RateLimit-Limit': '3',
            'X-RateLimit-Remaining': '2',
            'X-RateLimit-Reset': '1000080',
        }

    def test_new_window_resets_count(self, clock):
        limiter = _limiter(MemoryCounterStore(clock=clock), clock)
        for _ in range(4):
            limiter.check('user-1')

        clock.now += 60

        assert limiter.check('user-1').allowed is True

    def test_keys_are_independent(self, clock):
        limiter = _limiter(MemoryCounterStore(clock=clock), clock, limit=1)

        assert limiter.check('user-1').allowed is True
        assert limiter.check('user-2').allowed is True
        assert limiter.check('user-1').allowed is False

    def test_retry_after_counts_down(self, clock):
        limiter = _limiter(MemoryCounterStore(clock=clock), clock, limit=1)
        limiter.check('user-1')
        clock.now += 45.5

        assert limiter.check('user-1').retry_after == 15

    def test_sweep_drops_finished_windows(self, clock):
        store = MemoryCounterStore(clock=clock)
        store.increment('a', 60, clock.now)
        store.increment('b', 60, clock.now + 59)

        assert store.sweep(clock.now + 60) == 2
        assert len(store) == 0

    def test_sweep_keeps_live_windows(self, clock):
        store = MemoryCounterStore(clock=clock)
        store.increment('a', 60, clock.now)

        assert store.sweep(clock.now + 10) == 0
        assert len(store) == 1


class TestRedisStore:

    def test_counts_are_shared_through_redis(self, clock):
        client = fakeredis.FakeRedis()
        first = _limiter(RedisCounterStore(client, prefix='test'), clock)
        second = _limiter(RedisCounterStore(client, prefix='test'), clock)

        first.check('user-1')
        first.check('user-1')
        result = second.check('user-1')

        assert result.backend == 'redis'
        assert result.remaining == 0
        assert second.check('user-1').allowed is False

    def test_key_layout_and_expiry(self, clock):
        client = fakeredis.FakeRedis()
        store = RedisCounterStore(client, prefix='test')

        count, reset_at = store.increment('user-1', 60, clock.now)

        assert (count, reset_at) == (1, 1_000_080)
        key = 'test:user-1:1000020'
        assert client.get(key) == b'1'
        assert 0 < client.ttl(key) <= 61

    def test_failure_falls_back_to_memory(self, clock):
        broken = BrokenRedisStore()
        limiter = _limiter(broken, clock, limit=2)

        results = [limiter.check('user-1') for _ in range(3)]

        assert broken.calls == 3
        assert [r.backend for r in results] == ['memory'] * 3
        assert [r.allowed for r in results] == [True, True, False]


class TestBuild:

    def test_memory_when_no_redis_url(self):
        limiter = build_rate_limiter({'RATE_LIMIT_REQUESTS': 5, 'RATE_LIMIT_WINDOW_SECONDS': 30})
        try:
            assert limiter.store is limiter.fallback
            assert limiter.limit == 5
            assert limiter.window_seconds == 30
        finally:
            limiter.fallback.stop_sweeper()

    def test_redis_when_url_configured(self):
        limiter = build_rate_limiter({'REDIS_URL': 'redis://localhost:6379/0'})
        try:
            assert isinstance(limiter.store, RedisCounterStore)
            assert limiter.limit == 100
        finally:
            limiter.fallback.stop_sweeper()
