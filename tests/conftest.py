"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

# Set test environment before importing app modules
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/1"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["ENCRYPTION_MASTER_KEY"] = "A" * 43 + "="
os.environ["OAUTH_PROVIDER"] = "stub"
os.environ["LOCK_BACKEND"] = "memory"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["LOG_LEVEL"] = "WARNING"


class FakeClock:
    """Clock the tests move by hand."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class StubAdapters:
    """One stub adapter per platform, with PKCE where the live adapter uses it."""

    def __init__(self) -> None:
        from social_link.adapters.oauth import OAUTH_ADAPTERS, StubOAuthAdapter
        from social_link.domain.enums import Platform

        self.adapters = {
            platform: StubOAuthAdapter(
                platform=platform, uses_pkce=OAUTH_ADAPTERS[platform].uses_pkce
            )
            for platform in Platform
        }

    def __call__(self, platform):
        from social_link.adapters.oauth import parse_platform

        return self.adapters[parse_platform(platform)]

    def __getitem__(self, platform):
        return self(platform)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings():
    """Settings with a roomy rate limit and deterministic backoff."""
    from social_link.config import Settings

    return Settings(
        rate_limit_default=100,
        refresh_backoff_jitter=0.0,
        disconnect_lock_timeout_seconds=0.5,
    )


@pytest.fixture
def session_factory():
    """Fresh in-memory database per test."""
    from social_link.db.models import Base
    from social_link.db.session import create_db_engine, create_session_factory

    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def adapters() -> StubAdapters:
    return StubAdapters()


@pytest.fixture
def notifier():
    from social_link.services.notifications import StatusNotifier

    return StatusNotifier()


@pytest.fixture
def locks():
    from social_link.services.locks import InMemoryLockManager

    return InMemoryLockManager()


@pytest.fixture
def container(test_settings, session_factory, adapters, notifier, locks, clock):
    """Services wired to the in-memory database, stub adapters and the fake clock."""
    from social_link.services.container import build_container
    from social_link.services.rate_limit import RateLimiter

    return build_container(
        settings=test_settings,
        session_factory=session_factory,
        adapters=adapters,
        rate_limiter=RateLimiter(settings=test_settings, clock=clock),
        locks=locks,
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def connect_account(container) -> Callable[..., object]:
    """Run a complete connect flow and return the resulting record."""
    from social_link.domain.enums import Platform

    def _connect(
        user_id: str = "user-1",
        platform: Platform = Platform.YOUTUBE,
        account: str = "acct-1",
    ):
        start = container.authorization.initiate(user_id, platform)
        return container.authorization.handle_callback(
            platform, f"code:{account}", start.state
        )

    return _connect


@pytest.fixture
def test_client(container) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app backed by the test container."""
    from social_link.api.deps import get_services
    from social_link.main import app

    app.dependency_overrides[get_services] = lambda: container
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
