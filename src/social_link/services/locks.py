"""Per-connection mutual exclusion.

Refresh and disconnect on the same connection never overlap. Refresh asks
for the lock without waiting (``timeout=0``) and reports ``RefreshInProgress``
when it is held; disconnect waits a bounded time and reports ``LockTimeout``.
"""

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

import redis
from redis.exceptions import LockError
from redis.lock import Lock as RedisLock

from social_link.config import Settings, get_settings
from social_link.domain.errors import LockTimeout, RefreshInProgress
from social_link.logging import get_logger

logger = get_logger(__name__)

REDIS_LOCK_PREFIX = "social-link:lock:connection"


class LockManager(ABC):
    """Hands out one exclusive lock per connection id."""

    @contextmanager
    def acquire(self, connection_id: UUID | str, timeout: float = 0) -> Iterator[None]:
        """Hold the connection's lock for the duration of the block.

        Raises:
            RefreshInProgress: ``timeout`` is 0 and the lock is held.
            LockTimeout: The lock stayed held for ``timeout`` seconds.
        """
        key = str(connection_id)
        if not self._acquire(key, timeout):
            if timeout <= 0:
                raise RefreshInProgress(connection_id)
            raise LockTimeout(connection_id, timeout)
        try:
            yield
        finally:
            self._release(key)

    @abstractmethod
    def _acquire(self, key: str, timeout: float) -> bool: ...

    @abstractmethod
    def _release(self, key: str) -> None: ...


class InMemoryLockManager(LockManager):
    """Locks for a single process.

    A connection's lock is created on first use and dropped again once no
    caller holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._users: dict[str, int] = {}
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)

    def _checkout(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._registry_lock:
            users = self._users[key] - 1
            if users:
                self._users[key] = users
            else:
                del self._users[key]
                del self._locks[key]

    def _acquire(self, key: str, timeout: float) -> bool:
        lock = self._checkout(key)
        if timeout <= 0:
            acquired = lock.acquire(blocking=False)
        else:
            acquired = lock.acquire(timeout=timeout)
        if not acquired:
            self._checkin(key)
        return acquired

    def _release(self, key: str) -> None:
        with self._registry_lock:
            lock = self._locks[key]
        lock.release()
        self._checkin(key)

    def is_locked(self, connection_id: UUID | str) -> bool:
        with self._registry_lock:
            lock = self._locks.get(str(connection_id))
        return lock is not None and lock.locked()


class RedisLockManager(LockManager):
    """Locks shared by every API process and Celery worker.

    Each lock expires after ``expiry_seconds`` so a crashed holder cannot keep
    a connection blocked.
    """

    def __init__(self, client: "redis.Redis", expiry_seconds: float = 120) -> None:
        self.client = client
        self.expiry_seconds = expiry_seconds
        self._held: dict[str, RedisLock] = {}
        self._held_lock = threading.Lock()

    @classmethod
    def from_url(cls, url: str, expiry_seconds: float = 120) -> "RedisLockManager":
        return cls(redis.Redis.from_url(url), expiry_seconds=expiry_seconds)

    def _acquire(self, key: str, timeout: float) -> bool:
        lock = self.client.lock(
            f"{REDIS_LOCK_PREFIX}:{key}",
            timeout=self.expiry_seconds,
            thread_local=False,
        )
        if timeout <= 0:
            acquired = lock.acquire(blocking=False)
        else:
            acquired = lock.acquire(blocking=True, blocking_timeout=timeout)
        if acquired:
            with self._held_lock:
                self._held[key] = lock
        return bool(acquired)

    def _release(self, key: str) -> None:
        with self._held_lock:
            lock = self._held.pop(key, None)
        if lock is None:
            return
        try:
            lock.release()
        except LockError:
            # Expired while held; another owner may have it now
            logger.warning("connection_lock_expired_before_release", connection_id=key)


def create_lock_manager(settings: Settings | None = None) -> LockManager:
    """Build the lock manager named by ``LOCK_BACKEND``."""
    settings = settings or get_settings()
    if settings.lock_backend == "redis":
        return RedisLockManager.from_url(
            settings.redis_url, expiry_seconds=settings.lock_expiry_seconds
        )
    return InMemoryLockManager()
