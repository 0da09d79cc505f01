"""Process-wide service wiring.

Every component is constructed once per process and shared; the API, the
Celery tasks and the CLI all obtain services from ``get_container()``.
Tests build their own container with ``build_container`` and injected fakes.
"""

from dataclasses import dataclass
from functools import lru_cache

from sqlalchemy.orm import Session, sessionmaker

from social_link.adapters.oauth import OAuthAdapterRegistry
from social_link.config import Settings, get_settings
from social_link.db.session import get_session_factory
from social_link.services.authorization import AuthorizationService
from social_link.services.disconnect import DisconnectService
from social_link.services.locks import LockManager, create_lock_manager
from social_link.services.notifications import StatusNotifier, create_notifier
from social_link.services.rate_limit import RateLimiter, create_rate_limiter
from social_link.services.registry import ConnectionRegistry
from social_link.services.scheduler import RefreshScheduler
from social_link.services.token_store import AdapterProvider, TokenStore
from social_link.utils.clock import Clock, utc_now


@dataclass
class ServiceContainer:
    """All connection lifecycle services, sharing one set of collaborators."""

    settings: Settings
    session_factory: sessionmaker[Session]
    adapters: AdapterProvider
    rate_limiter: RateLimiter
    locks: LockManager
    notifier: StatusNotifier
    token_store: TokenStore
    scheduler: RefreshScheduler
    authorization: AuthorizationService
    registry: ConnectionRegistry
    disconnect: DisconnectService


def build_container(
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    adapters: AdapterProvider | None = None,
    rate_limiter: RateLimiter | None = None,
    locks: LockManager | None = None,
    notifier: StatusNotifier | None = None,
    clock: Clock = utc_now,
) -> ServiceContainer:
    """Wire the services, building any collaborator that was not supplied."""
    settings = settings or get_settings()
    session_factory = session_factory or get_session_factory()
    adapters = adapters or OAuthAdapterRegistry(settings)
    rate_limiter = rate_limiter or create_rate_limiter(settings, clock=clock)
    locks = locks or create_lock_manager(settings)
    notifier = notifier or create_notifier(settings)

    token_store = TokenStore(
        session_factory,
        adapters,
        rate_limiter,
        locks,
        notifier,
        settings=settings,
        clock=clock,
    )
    return ServiceContainer(
        settings=settings,
        session_factory=session_factory,
        adapters=adapters,
        rate_limiter=rate_limiter,
        locks=locks,
        notifier=notifier,
        token_store=token_store,
        scheduler=RefreshScheduler(session_factory, token_store, clock=clock),
        authorization=AuthorizationService(
            session_factory,
            adapters,
            token_store,
            rate_limiter,
            locks,
            settings=settings,
            clock=clock,
        ),
        registry=ConnectionRegistry(session_factory, notifier, clock=clock),
        disconnect=DisconnectService(
            session_factory,
            adapters,
            token_store,
            rate_limiter,
            locks,
            settings=settings,
            clock=clock,
        ),
    )


@lru_cache(maxsize=1)
def get_container() -> ServiceContainer:
    """The process-wide container."""
    return build_container()
