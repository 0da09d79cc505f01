"""Tests for outbound rate limiting."""

import threading
from unittest.mock import MagicMock

import pytest
import redis

from social_link.config import Settings
from social_link.domain.enums import Platform
from social_link.services.rate_limit import (
    InMemoryRateLimitBackend,
    RateLimiter,
    RedisRateLimitBackend,
)


@pytest.fixture
def limiter(clock):
    """Five calls per 60 second window."""
    return RateLimiter(
        settings=Settings(rate_limit_default=5, rate_limit_window_seconds=60),
        clock=clock,
    )


class TestSlidingWindow:
    """Tests for the in-memory sliding window."""

    def test_sixth_call_denied(self, limiter):
        """Test the call past the limit is denied with a retry hint."""
        for _ in range(5):
            assert limiter.try_acquire(Platform.TWITTER).allowed is True

        decision = limiter.try_acquire(Platform.TWITTER)

        assert decision.allowed is False
        assert decision.retry_after == pytest.approx(60.0)

    def test_window_slides(self, limiter, clock):
        """Test slots free up as entries age out of the window."""
        for _ in range(5):
            limiter.try_acquire(Platform.TWITTER)

        clock.advance(30)
        decision = limiter.try_acquire(Platform.TWITTER)
        assert decision.allowed is False
        assert decision.retry_after == pytest.approx(30.0)

        clock.advance(30)
        assert limiter.try_acquire(Platform.TWITTER).allowed is True

    def test_platforms_are_independent(self, limiter):
        """Test each platform has its own window."""
        for _ in range(5):
            limiter.try_acquire(Platform.TWITTER)

        assert limiter.try_acquire(Platform.YOUTUBE).allowed is True

    def test_per_platform_override(self, clock):
        """Test a platform override replaces the default limit."""
        limiter = RateLimiter(
            settings=Settings(rate_limit_default=5, rate_limits={"twitter": 2}),
            clock=clock,
        )

        assert limiter.limit_for(Platform.TWITTER) == 2
        assert limiter.limit_for(Platform.TIKTOK) == 5
        limiter.try_acquire(Platform.TWITTER)
        limiter.try_acquire(Platform.TWITTER)
        assert limiter.try_acquire(Platform.TWITTER).allowed is False

    def test_per_account_keys(self, clock):
        """Test per-account mode gives each external account its own window."""
        limiter = RateLimiter(
            settings=Settings(rate_limit_default=1, rate_limit_per_account=True),
            clock=clock,
        )

        assert limiter.key_for(Platform.TWITTER, "42") == "twitter:42"
        assert limiter.try_acquire(Platform.TWITTER, "42").allowed is True
        assert limiter.try_acquire(Platform.TWITTER, "43").allowed is True
        assert limiter.try_acquire(Platform.TWITTER, "42").allowed is False

    def test_concurrent_callers_never_exceed_limit(self):
        """Test the window admits exactly ``limit`` calls under contention."""
        backend = InMemoryRateLimitBackend()
        allowed: list[bool] = []
        lock = threading.Lock()

        def worker() -> None:
            result = backend.hit("twitter", 10, 60, now=1000.0) is None
            with lock:
                allowed.append(result)

        threads = [threading.Thread(target=worker) for _ in range(50)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert allowed.count(True) == 10

    def test_empty_windows_are_dropped(self):
        """Test a key whose window stays empty is not kept around."""
        backend = InMemoryRateLimitBackend()

        assert backend.hit("tiktok", 0, 60, now=1000.0) == 60
        assert len(backend) == 0

    def test_idle_keys_are_dropped(self):
        """Test windows whose entries have all aged out are evicted."""
        backend = InMemoryRateLimitBackend(idle_sweep_every=2)
        backend.hit("twitter:1", 5, 60, now=1000.0)
        assert len(backend) == 1

        # The second checkout sweeps; twitter:1 aged out long ago
        backend.hit("twitter:2", 5, 60, now=2000.0)

        assert len(backend) == 1
        assert backend.hit("twitter:1", 1, 60, now=2001.0) is None


class TestRedisBackend:
    """Tests for the Redis sorted-set backend against a mocked client."""

    @pytest.fixture
    def pipe(self):
        return MagicMock()

    @pytest.fixture
    def backend(self, pipe):
        client = MagicMock()
        client.pipeline.return_value.__enter__.return_value = pipe
        return RedisRateLimitBackend(client)

    def test_allowed_records_entry(self, backend, pipe):
        """Test an allowed call prunes, inserts and sets the key expiry in MULTI."""
        pipe.zcount.return_value = 2

        assert backend.hit("twitter", 5, 60, now=1000.0) is None

        pipe.watch.assert_called_once_with("social-link:ratelimit:twitter")
        pipe.multi.assert_called_once()
        pipe.zremrangebyscore.assert_called_once_with(
            "social-link:ratelimit:twitter", "-inf", 940.0
        )
        pipe.zadd.assert_called_once()
        pipe.expire.assert_called_once_with("social-link:ratelimit:twitter", 61)
        pipe.execute.assert_called_once()

    def test_denied_reports_oldest_entry(self, backend, pipe):
        """Test a full window reports when its oldest entry ages out."""
        pipe.zcount.return_value = 5
        pipe.zrangebyscore.return_value = [(b"970.0:abc", 970.0)]

        retry_after = backend.hit("twitter", 5, 60, now=1000.0)

        assert retry_after == pytest.approx(30.0)
        pipe.multi.assert_not_called()

    def test_retries_on_watch_error(self, backend, pipe):
        """Test a concurrent writer causes a retry instead of a lost update."""
        pipe.zcount.return_value = 0
        pipe.execute.side_effect = [redis.WatchError(), [1, 1, True]]

        assert backend.hit("twitter", 5, 60, now=1000.0) is None
        assert pipe.execute.call_count == 2
