"""Outbound rate limiting for platform OAuth calls.

Sliding log window per key (``platform`` or ``platform:account``): each
allowed call records a timestamp, entries older than the window are pruned
lazily on the next check, and a call is allowed while fewer than ``limit``
entries remain. A denial reports how long until the oldest entry ages out.
"""

import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from uuid import uuid4

import redis

from social_link.config import Settings, get_settings
from social_link.domain.enums import Platform
from social_link.domain.models import RateLimitDecision
from social_link.logging import get_logger
from social_link.utils.clock import Clock, utc_now

logger = get_logger(__name__)

REDIS_KEY_PREFIX = "social-link:ratelimit"


class RateLimitBackend(ABC):
    """Storage for sliding windows."""

    @abstractmethod
    def hit(self, key: str, limit: int, window_seconds: float, now: float) -> float | None:
        """Record a call if the window has room.

        Returns None when the call is allowed, otherwise the seconds until
        the window frees a slot.
        """
        ...


@dataclass
class _KeyWindow:
    lock: threading.Lock = field(default_factory=threading.Lock)
    entries: deque[float] = field(default_factory=deque)
    window_seconds: float = 0.0
    users: int = 0


class InMemoryRateLimitBackend(RateLimitBackend):
    """Process-local windows guarded by one lock per key.

    A key is dropped once no caller is using it and its window holds no
    live entries, so the map only tracks recently used keys.
    """

    def __init__(self, idle_sweep_every: int = 1000) -> None:
        self._windows: dict[str, _KeyWindow] = {}
        self._registry_lock = threading.Lock()
        self._idle_sweep_every = idle_sweep_every
        self._checkouts = 0

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._windows)

    def _checkout(self, key: str, window_seconds: float, now: float) -> _KeyWindow:
        with self._registry_lock:
            self._checkouts += 1
            if self._checkouts % self._idle_sweep_every == 0:
                self._drop_idle(now)
            window = self._windows.get(key)
            if window is None:
                window = self._windows[key] = _KeyWindow()
            window.window_seconds = window_seconds
            window.users += 1
            return window

    def _checkin(self, key: str, window: _KeyWindow) -> None:
        with self._registry_lock:
            window.users -= 1
            if window.users == 0 and not window.entries:
                self._windows.pop(key, None)

    def _drop_idle(self, now: float) -> None:
        # Caller holds the registry lock; windows with no users are not mutated
        for key, window in list(self._windows.items()):
            if window.users:
                continue
            if not window.entries or window.entries[-1] <= now - window.window_seconds:
                del self._windows[key]

    def hit(self, key: str, limit: int, window_seconds: float, now: float) -> float | None:
        window = self._checkout(key, window_seconds, now)
        try:
            with window.lock:
                entries = window.entries
                cutoff = now - window_seconds
                while entries and entries[0] <= cutoff:
                    entries.popleft()

                if len(entries) < limit:
                    entries.append(now)
                    return None
                if not entries:
                    return window_seconds
                return max(entries[0] + window_seconds - now, 0.001)
        finally:
            self._checkin(key, window)


class RedisRateLimitBackend(RateLimitBackend):
    """Windows kept in Redis sorted sets so every worker shares them.

    The count is read under WATCH and the prune and insert run in MULTI; a
    concurrent writer aborts the transaction and the check is retried.
    """

    def __init__(self, client: "redis.Redis", max_retries: int = 10) -> None:
        self.client = client
        self.max_retries = max_retries

    @classmethod
    def from_url(cls, url: str) -> "RedisRateLimitBackend":
        return cls(redis.Redis.from_url(url))

    def hit(self, key: str, limit: int, window_seconds: float, now: float) -> float | None:
        redis_key = f"{REDIS_KEY_PREFIX}:{key}"
        cutoff = now - window_seconds

        for _ in range(self.max_retries):
            with self.client.pipeline() as pipe:
                try:
                    pipe.watch(redis_key)
                    count = pipe.zcount(redis_key, f"({cutoff}", "+inf")

                    if count >= limit:
                        oldest = pipe.zrangebyscore(
                            redis_key, f"({cutoff}", "+inf", start=0, num=1, withscores=True
                        )
                        pipe.unwatch()
                        if not oldest:
                            return window_seconds
                        return max(float(oldest[0][1]) + window_seconds - now, 0.001)

                    pipe.multi()
                    pipe.zremrangebyscore(redis_key, "-inf", cutoff)
                    pipe.zadd(redis_key, {f"{now}:{uuid4().hex}": now})
                    pipe.expire(redis_key, int(window_seconds) + 1)
                    pipe.execute()
                    return None
                except redis.WatchError:
                    continue

        logger.warning("rate_limit_contention", key=key, retries=self.max_retries)
        return window_seconds


class RateLimiter:
    """Decides whether an outbound call to a platform may proceed now."""

    def __init__(
        self,
        backend: RateLimitBackend | None = None,
        settings: Settings | None = None,
        clock: Clock = utc_now,
        limits: dict[str, int] | None = None,
        window_seconds: float | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.backend = backend or InMemoryRateLimitBackend()
        self.clock = clock
        self.default_limit = settings.rate_limit_default
        self.limits = {k.lower(): v for k, v in (limits or settings.rate_limits).items()}
        self.window_seconds = float(window_seconds or settings.rate_limit_window_seconds)
        self.per_account = settings.rate_limit_per_account

    def limit_for(self, platform: Platform | str) -> int:
        return self.limits.get(str(platform), self.default_limit)

    def key_for(self, platform: Platform | str, account_id: str | None = None) -> str:
        if self.per_account and account_id:
            return f"{platform}:{account_id}"
        return str(platform)

    def try_acquire(
        self, platform: Platform | str, account_id: str | None = None
    ) -> RateLimitDecision:
        """Consume one slot of the platform's window if available."""
        key = self.key_for(platform, account_id)
        limit = self.limit_for(platform)
        now = self.clock().timestamp()

        retry_after = self.backend.hit(key, limit, self.window_seconds, now)
        if retry_after is None:
            return RateLimitDecision(allowed=True)

        logger.info(
            "rate_limit_denied",
            platform=str(platform),
            key=key,
            limit=limit,
            retry_after=round(retry_after, 3),
        )
        return RateLimitDecision(allowed=False, retry_after=retry_after)


def create_rate_limiter(settings: Settings | None = None, clock: Clock = utc_now) -> RateLimiter:
    """Build a limiter using the backend named by ``RATE_LIMIT_BACKEND``."""
    settings = settings or get_settings()
    if settings.rate_limit_backend == "redis":
        backend: RateLimitBackend = RedisRateLimitBackend.from_url(settings.redis_url)
    else:
        backend = InMemoryRateLimitBackend()
    return RateLimiter(backend=backend, settings=settings, clock=clock)
