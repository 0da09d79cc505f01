"""Tests for the token store and refresh state machine."""

import threading
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from social_link.config import Settings
from social_link.db.models import SocialAccountConnectionModel
from social_link.domain.enums import ConnectionStatus, FailureKind, Platform
from social_link.domain.errors import (
    ConnectionNotFound,
    ConnectionNotRefreshable,
    RateLimitExceeded,
    RefreshFailed,
    RefreshInProgress,
    RefreshTransientFailure,
)
from social_link.services.encryption import decrypt_token
from social_link.services.rate_limit import RateLimiter
from social_link.services.token_store import TokenStore


def load_record(session_factory, connection_id):
    with session_factory() as session:
        return session.get(SocialAccountConnectionModel, connection_id)


def set_status(session_factory, connection_id, status):
    with session_factory() as session:
        record = session.get(SocialAccountConnectionModel, connection_id)
        record.status = status
        session.commit()


class TestSchedulingArithmetic:
    """Tests for threshold and backoff calculations."""

    def test_threshold_is_fixed_for_long_lived_tokens(self, container):
        """Test an hour-long token refreshes five minutes before expiry."""
        issued = datetime(2026, 1, 1, tzinfo=timezone.utc)
        threshold = container.token_store.refresh_threshold(issued, issued + timedelta(hours=1))
        assert threshold == timedelta(seconds=300)

    def test_threshold_scales_for_short_lived_tokens(self, container):
        """Test a ten-minute token refreshes at a tenth of its lifetime."""
        issued = datetime(2026, 1, 1, tzinfo=timezone.utc)
        threshold = container.token_store.refresh_threshold(
            issued, issued + timedelta(minutes=10)
        )
        assert threshold == timedelta(seconds=60)

    def test_backoff_grows_and_caps(self, container):
        """Test exponential backoff from the base up to the maximum."""
        store = container.token_store
        assert store.compute_backoff(1) == 30
        assert store.compute_backoff(2) == 60
        assert store.compute_backoff(3) == 120
        assert store.compute_backoff(7) == 1800
        assert store.compute_backoff(20) == 1800

    def test_backoff_jitter(self, container):
        """Test jitter adds at most the configured fraction."""
        store = TokenStore(
            container.session_factory,
            container.adapters,
            container.rate_limiter,
            container.locks,
            container.notifier,
            settings=Settings(refresh_backoff_jitter=0.2),
            rng=lambda: 1.0,
        )
        assert store.compute_backoff(1) == pytest.approx(36.0)


class TestRefresh:
    """Tests for refreshing a connection's tokens."""

    def test_manual_refresh(self, container, connect_account, adapters, session_factory, clock):
        """Test a refresh stores new tokens and keeps the record ACTIVE."""
        record = connect_account()
        old_token = decrypt_token(load_record(session_factory, record.id).encrypted_access_token)
        clock.advance(60)

        refreshed = container.token_store.refresh(record.id, manual=True)

        assert refreshed.status == ConnectionStatus.ACTIVE
        assert refreshed.last_refreshed_at == clock.now
        assert refreshed.token_expires_at == clock.now + timedelta(seconds=3600)
        assert refreshed.refresh_attempts == 0
        new_token = decrypt_token(load_record(session_factory, record.id).encrypted_access_token)
        assert new_token != old_token
        assert adapters["youtube"].refresh_calls == 1

    def test_scheduled_refresh_skips_fresh_token(self, container, connect_account, adapters):
        """Test a duplicate scheduled refresh does nothing while the token is fresh."""
        record = connect_account()

        result = container.token_store.refresh(record.id)

        assert result.status == ConnectionStatus.ACTIVE
        assert adapters["youtube"].refresh_calls == 0

    def test_scheduled_refresh_when_due(self, container, connect_account, adapters, clock):
        """Test a scheduled refresh runs inside the threshold."""
        record = connect_account()
        clock.advance(3600 - 240)

        container.token_store.refresh(record.id)

        assert adapters["youtube"].refresh_calls == 1

    def test_concurrent_refresh_calls_platform_once(
        self, container, connect_account, adapters, session_factory
    ):
        """Test a second refresh while one is in flight is rejected, not duplicated."""
        record = connect_account()
        adapter = adapters["youtube"]
        adapter.refresh_gate = threading.Event()
        errors: list[Exception] = []

        def first_refresh() -> None:
            try:
                container.token_store.refresh(record.id, manual=True)
            except Exception as e:
                errors.append(e)

        thread = threading.Thread(target=first_refresh)
        thread.start()
        assert adapter.refresh_started.wait(timeout=5)

        assert load_record(session_factory, record.id).status == ConnectionStatus.TOKEN_REFRESHING
        with pytest.raises(RefreshInProgress):
            container.token_store.refresh(record.id, manual=True)

        adapter.refresh_gate.set()
        thread.join(timeout=5)

        assert errors == []
        assert adapter.refresh_calls == 1
        assert load_record(session_factory, record.id).status == ConnectionStatus.ACTIVE

    def test_permanent_failure_marks_error(self, container, connect_account, adapters):
        """Test a rejected refresh token requires reconnecting."""
        record = connect_account()
        adapters["youtube"].refresh_failure = FailureKind.PERMANENT

        with pytest.raises(RefreshFailed):
            container.token_store.refresh(record.id, manual=True)

        summary = container.registry.get(record.id)
        assert summary.status == ConnectionStatus.ERROR
        assert summary.last_error.startswith("Refresh rejected")
        assert summary.next_refresh_at is None

    def test_transient_failure_schedules_retry(self, container, connect_account, adapters, clock):
        """Test a retryable failure backs off exponentially."""
        record = connect_account()
        adapters["youtube"].refresh_failure = FailureKind.TRANSIENT

        with pytest.raises(RefreshTransientFailure) as exc_info:
            container.token_store.refresh(record.id, manual=True)
        assert exc_info.value.retry_in_seconds == 30

        summary = container.registry.get(record.id)
        assert summary.status == ConnectionStatus.TOKEN_EXPIRED
        assert summary.next_refresh_at == clock.now + timedelta(seconds=30)
        assert summary.last_error is None

        clock.advance(30)
        with pytest.raises(RefreshTransientFailure) as exc_info:
            container.token_store.refresh(record.id)
        assert exc_info.value.retry_in_seconds == 60

    def test_recovery_resets_attempts(self, container, connect_account, adapters, session_factory):
        """Test a success after transient failures clears the attempt counter."""
        record = connect_account()
        adapter = adapters["youtube"]
        adapter.refresh_failure = FailureKind.TRANSIENT
        with pytest.raises(RefreshTransientFailure):
            container.token_store.refresh(record.id, manual=True)

        adapter.refresh_failure = None
        refreshed = container.token_store.refresh(record.id, manual=True)

        assert refreshed.status == ConnectionStatus.ACTIVE
        assert load_record(session_factory, record.id).refresh_attempts == 0

    def test_retries_exhausted_marks_error(self, container, connect_account, adapters):
        """Test consecutive transient failures end in ERROR."""
        record = connect_account()
        adapters["youtube"].refresh_failure = FailureKind.TRANSIENT

        for _ in range(7):
            with pytest.raises(RefreshTransientFailure):
                container.token_store.refresh(record.id, manual=True)

        with pytest.raises(RefreshFailed):
            container.token_store.refresh(record.id, manual=True)

        summary = container.registry.get(record.id)
        assert summary.status == ConnectionStatus.ERROR
        assert "8 times" in summary.last_error

    def test_rate_limited_refresh(self, container, connect_account, adapters, clock):
        """Test a spent budget marks the record RATE_LIMITED with a retry time."""
        record = connect_account()
        limiter = RateLimiter(settings=Settings(rate_limit_default=1), clock=clock)
        limiter.try_acquire(Platform.YOUTUBE)
        container.token_store.rate_limiter = limiter

        with pytest.raises(RateLimitExceeded):
            container.token_store.refresh(record.id, manual=True)

        summary = container.registry.get(record.id)
        assert summary.status == ConnectionStatus.RATE_LIMITED
        assert summary.next_refresh_at > clock.now
        assert adapters["youtube"].refresh_calls == 0

    def test_error_record_not_refreshable(self, container, connect_account, session_factory):
        """Test ERROR records need a reconnect, not a refresh."""
        record = connect_account()
        set_status(session_factory, record.id, ConnectionStatus.ERROR)

        with pytest.raises(ConnectionNotRefreshable):
            container.token_store.refresh(record.id, manual=True)

    def test_unknown_connection(self, container):
        """Test unknown and malformed ids are reported as not found."""
        with pytest.raises(ConnectionNotFound):
            container.token_store.refresh(uuid4(), manual=True)
        with pytest.raises(ConnectionNotFound):
            container.token_store.refresh("not-a-uuid", manual=True)

    def test_missing_refresh_token_marks_error(self, container, connect_account, adapters):
        """Test a record without a refresh credential cannot be refreshed."""
        adapters["youtube"].issue_refresh_token = False
        record = connect_account()

        with pytest.raises(RefreshFailed):
            container.token_store.refresh(record.id, manual=True)

        assert container.registry.get(record.id).status == ConnectionStatus.ERROR

    def test_refresh_keeps_existing_refresh_token(
        self, container, connect_account, adapters, session_factory
    ):
        """Test a refresh response without a refresh token keeps the stored one."""
        record = connect_account()
        original = decrypt_token(load_record(session_factory, record.id).encrypted_refresh_token)
        adapters["youtube"].issue_refresh_token = False

        container.token_store.refresh(record.id, manual=True)

        stored = load_record(session_factory, record.id)
        assert decrypt_token(stored.encrypted_refresh_token) == original

    def test_refresh_with_access_token(self, container, connect_account, adapters):
        """Test platforms without refresh tokens extend the access token instead."""
        adapter = adapters["facebook"]
        adapter.refresh_with_access_token = True
        adapter.issue_refresh_token = False
        record = connect_account(platform=Platform.FACEBOOK)

        refreshed = container.token_store.refresh(record.id, manual=True)

        assert refreshed.status == ConnectionStatus.ACTIVE
        assert adapter.refresh_calls == 1

    def test_refresh_publishes_transitions(self, container, connect_account):
        """Test subscribers see TOKEN_REFRESHING and then ACTIVE."""
        record = connect_account()
        changes = []
        container.registry.subscribe("user-1", changes.append)

        container.token_store.refresh(record.id, manual=True)

        assert [c.new_status for c in changes] == [
            ConnectionStatus.TOKEN_REFRESHING,
            ConnectionStatus.ACTIVE,
        ]

    def test_unexpected_adapter_error_schedules_retry(
        self, container, connect_account, adapters, session_factory, clock
    ):
        """Test an error outside the adapter contract does not strand the record."""
        record = connect_account()
        adapters["youtube"].refresh_error = ValueError("bad payload")

        with pytest.raises(RefreshTransientFailure):
            container.token_store.refresh(record.id, manual=True)

        stored = load_record(session_factory, record.id)
        assert stored.status == ConnectionStatus.TOKEN_EXPIRED
        assert stored.refresh_attempts == 1
        assert stored.next_refresh_at == clock.now + timedelta(seconds=30)

        adapters["youtube"].refresh_error = None
        refreshed = container.token_store.refresh(record.id, manual=True)
        assert refreshed.status == ConnectionStatus.ACTIVE


class TestTokenLifetime:
    """Tests for grants issued without an expiry."""

    def test_connect_without_expiry_uses_default_lifetime(
        self, container, connect_account, adapters, clock
    ):
        """Test a grant lacking expires_in still gets an expiry and a refresh schedule."""
        adapters["youtube"].expires_in = None

        record = connect_account()

        summary = container.registry.get(record.id)
        assert summary.status == ConnectionStatus.ACTIVE
        assert summary.token_expires_at == clock.now + timedelta(seconds=3600)
        assert summary.next_refresh_at is not None

    def test_refresh_without_expiry_uses_default_lifetime(
        self, container, connect_account, adapters, clock
    ):
        """Test a refresh response lacking expires_in keeps the record refreshable."""
        record = connect_account()
        adapters["youtube"].expires_in = None
        clock.advance(60)

        container.token_store.refresh(record.id, manual=True)

        summary = container.registry.get(record.id)
        assert summary.status == ConnectionStatus.ACTIVE
        assert summary.token_expires_at == clock.now + timedelta(seconds=3600)

    def test_default_lifetime_is_configurable(self, container):
        """Test the assumed lifetime follows settings."""
        store = TokenStore(
            container.session_factory,
            container.adapters,
            container.rate_limiter,
            container.locks,
            container.notifier,
            settings=Settings(default_token_lifetime_seconds=600),
        )

        assert store.default_token_lifetime == 600
