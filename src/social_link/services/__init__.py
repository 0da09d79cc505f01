"""Application services."""

from social_link.services.authorization import AuthorizationService
from social_link.services.container import ServiceContainer, build_container, get_container
from social_link.services.disconnect import DisconnectService
from social_link.services.locks import InMemoryLockManager, LockManager, RedisLockManager
from social_link.services.notifications import StatusNotifier
from social_link.services.rate_limit import (
    InMemoryRateLimitBackend,
    RateLimiter,
    RedisRateLimitBackend,
)
from social_link.services.registry import ConnectionRegistry
from social_link.services.scheduler import RefreshScheduler
from social_link.services.token_store import TokenStore

__all__ = [
    "AuthorizationService",
    "ConnectionRegistry",
    "DisconnectService",
    "InMemoryLockManager",
    "InMemoryRateLimitBackend",
    "LockManager",
    "RateLimiter",
    "RedisLockManager",
    "RedisRateLimitBackend",
    "RefreshScheduler",
    "ServiceContainer",
    "StatusNotifier",
    "TokenStore",
    "build_container",
    "get_container",
]
