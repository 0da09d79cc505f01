"""Token Store: encrypted credentials and the refresh state machine.

The store owns every write to a connection's tokens. A refresh runs under
the connection's lock in three steps so no database transaction is held open
across the outbound call:

1. load the record, check it is refreshable and within the rate limit, mark
   it TOKEN_REFRESHING and commit;
2. call the platform adapter;
3. reload the record and commit the outcome (ACTIVE, TOKEN_EXPIRED with a
   backoff retry, or ERROR).
"""

import random
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from social_link.adapters.oauth.base import (
    AccountProfile,
    OAuthAdapter,
    OAuthAdapterError,
    TokenGrant,
)
from social_link.config import Settings, get_settings
from social_link.db.models import SocialAccountConnectionModel
from social_link.db.session import session_scope
from social_link.domain.enums import (
    REFRESHABLE_STATUSES,
    ConnectionStatus,
    FailureKind,
    Platform,
)
from social_link.domain.errors import (
    ConnectionNotFound,
    ConnectionNotRefreshable,
    RateLimitExceeded,
    RefreshFailed,
    RefreshTransientFailure,
)
from social_link.domain.models import StatusChange
from social_link.logging import get_logger
from social_link.services.encryption import decrypt_token, encrypt_optional, encrypt_token
from social_link.services.locks import LockManager
from social_link.services.notifications import StatusNotifier
from social_link.services.rate_limit import RateLimiter
from social_link.utils.clock import Clock, ensure_utc, utc_now

logger = get_logger(__name__)

AdapterProvider = Callable[[Platform], OAuthAdapter]


def apply_status(
    record: SocialAccountConnectionModel,
    new_status: ConnectionStatus,
    now: datetime,
    error: str | None = None,
) -> StatusChange | None:
    """Move a record to ``new_status``.

    ``last_error`` is only kept while the record is in ERROR. Returns the
    change to publish once the transaction commits, or None when the status
    did not change.
    """
    old_status = ConnectionStatus(record.status) if record.status else None
    record.status = new_status
    record.last_error = error if new_status == ConnectionStatus.ERROR else None
    record.updated_at = now

    if old_status == new_status:
        return None
    return StatusChange(
        connection_id=record.id,
        user_id=record.user_id,
        platform=Platform(record.platform),
        old_status=old_status,
        new_status=new_status,
        occurred_at=now,
        last_error=record.last_error,
    )


def clear_secrets(record: SocialAccountConnectionModel) -> None:
    record.encrypted_access_token = None
    record.encrypted_refresh_token = None
    record.token_issued_at = None
    record.token_expires_at = None
    record.next_refresh_at = None
    record.refresh_attempts = 0


class TokenStore:
    """Stores tokens and refreshes them before they expire."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        adapters: AdapterProvider,
        rate_limiter: RateLimiter,
        locks: LockManager,
        notifier: StatusNotifier,
        settings: Settings | None = None,
        clock: Clock = utc_now,
        rng: Callable[[], float] = random.random,
    ) -> None:
        settings = settings or get_settings()
        self.session_factory = session_factory
        self.adapters = adapters
        self.rate_limiter = rate_limiter
        self.locks = locks
        self.notifier = notifier
        self.clock = clock
        self.rng = rng

        self.threshold_seconds = settings.refresh_threshold_seconds
        self.threshold_ratio = settings.refresh_threshold_ratio
        self.backoff_base = settings.refresh_backoff_base_seconds
        self.backoff_multiplier = settings.refresh_backoff_multiplier
        self.backoff_max = settings.refresh_backoff_max_seconds
        self.backoff_jitter = settings.refresh_backoff_jitter
        self.max_attempts = settings.refresh_max_attempts
        self.default_token_lifetime = settings.default_token_lifetime_seconds
        self.stalled_after = timedelta(seconds=settings.lock_expiry_seconds)

    def refresh_threshold(
        self, issued_at: datetime | None, expires_at: datetime | None
    ) -> timedelta:
        """Lead time before expiry at which a token is refreshed.

        The lesser of the fixed threshold and the configured fraction of the
        token's lifetime, so short-lived tokens are not refreshed right after
        they are issued.
        """
        threshold = float(self.threshold_seconds)
        if issued_at and expires_at:
            lifetime = (expires_at - issued_at).total_seconds()
            if lifetime > 0:
                threshold = min(threshold, lifetime * self.threshold_ratio)
        return timedelta(seconds=threshold)

    def refresh_due_at(self, record: SocialAccountConnectionModel) -> datetime | None:
        expires_at = ensure_utc(record.token_expires_at)
        if expires_at is None:
            return None
        return expires_at - self.refresh_threshold(ensure_utc(record.token_issued_at), expires_at)

    def is_due(self, record: SocialAccountConnectionModel, now: datetime) -> bool:
        """Whether the sweep should refresh this record now."""
        if record.status == ConnectionStatus.ACTIVE:
            due_at = self.refresh_due_at(record)
            return due_at is not None and due_at <= now
        next_refresh_at = ensure_utc(record.next_refresh_at)
        return next_refresh_at is None or next_refresh_at <= now

    def compute_backoff(self, attempts: int) -> float:
        """Retry delay in seconds after ``attempts`` consecutive transient failures."""
        exponent = max(attempts - 1, 0)
        delay = min(self.backoff_base * self.backoff_multiplier**exponent, self.backoff_max)
        return delay + delay * self.backoff_jitter * self.rng()

    def store_grant(
        self,
        record: SocialAccountConnectionModel,
        grant: TokenGrant,
        now: datetime,
    ) -> None:
        """Encrypt and attach freshly issued tokens to a record."""
        record.encrypted_access_token = encrypt_token(grant.access_token)
        if grant.refresh_token:
            record.encrypted_refresh_token = encrypt_optional(grant.refresh_token)
        record.token_issued_at = now
        record.token_expires_at = now + timedelta(
            seconds=grant.expires_in or self.default_token_lifetime
        )
        if grant.scopes:
            record.scopes = list(grant.scopes)
        record.refresh_attempts = 0
        record.next_refresh_at = self.refresh_due_at(record)

    def find_connection(
        self,
        session: Session,
        user_id: str,
        platform: Platform,
        external_account_id: str,
    ) -> SocialAccountConnectionModel | None:
        return session.execute(
            select(SocialAccountConnectionModel).where(
                SocialAccountConnectionModel.user_id == user_id,
                SocialAccountConnectionModel.platform == str(platform),
                SocialAccountConnectionModel.external_account_id == external_account_id,
            )
        ).scalar_one_or_none()

    def find_placeholder(
        self, session: Session, user_id: str, platform: Platform
    ) -> SocialAccountConnectionModel | None:
        """Record left by a failed first-time connect (no external account yet)."""
        return session.execute(
            select(SocialAccountConnectionModel)
            .where(
                SocialAccountConnectionModel.user_id == user_id,
                SocialAccountConnectionModel.platform == str(platform),
                SocialAccountConnectionModel.external_account_id.is_(None),
            )
            .order_by(SocialAccountConnectionModel.created_at)
            .limit(1)
        ).scalar_one_or_none()

    def upsert_connection(
        self,
        session: Session,
        user_id: str,
        platform: Platform,
        profile: AccountProfile,
        grant: TokenGrant,
        reconnect: SocialAccountConnectionModel | None = None,
    ) -> tuple[SocialAccountConnectionModel, list[StatusChange]]:
        """Create or update the record for (user, platform, external account).

        An existing record for the triple is updated in place. Otherwise the
        reconnecting record (if it belongs to the same external account) or a
        placeholder ERROR record is adopted, and only then is a new record
        created. Leftover placeholders are removed.
        """
        now = self.clock()
        changes: list[StatusChange] = []

        record = self.find_connection(session, user_id, platform, profile.external_account_id)
        if record is None and reconnect is not None and reconnect.external_account_id in (
            None,
            profile.external_account_id,
        ):
            record = reconnect
        if record is None:
            record = self.find_placeholder(session, user_id, platform)
        if record is None:
            record = SocialAccountConnectionModel(
                user_id=user_id,
                platform=str(platform),
                status=ConnectionStatus.PENDING_AUTH,
                refresh_attempts=0,
                created_at=now,
            )
            session.add(record)
            session.flush()

        record.external_account_id = profile.external_account_id
        record.external_account_handle = profile.handle
        self.store_grant(record, grant, now)
        change = apply_status(record, ConnectionStatus.ACTIVE, now)
        if change:
            changes.append(change)

        session.flush()
        placeholder = self.find_placeholder(session, user_id, platform)
        if placeholder is not None and placeholder.id != record.id:
            session.delete(placeholder)

        return record, changes

    def publish(self, changes: list[StatusChange | None]) -> None:
        for change in changes:
            if change is not None:
                self.notifier.publish(change)

    def refresh(
        self, connection_id: UUID | str, *, manual: bool = False
    ) -> SocialAccountConnectionModel:
        """Refresh a connection's access token.

        Raises:
            RefreshInProgress: Another refresh or a disconnect holds the lock.
            ConnectionNotFound: No such connection.
            ConnectionNotRefreshable: The connection is not ACTIVE, TOKEN_EXPIRED or RATE_LIMITED.
            RateLimitExceeded: The platform's outbound budget is spent; retry is scheduled.
            RefreshFailed: The platform rejected the refresh; reconnect required.
            RefreshTransientFailure: A retryable failure; retry is scheduled.
        """
        try:
            connection_id = UUID(str(connection_id))
        except ValueError:
            raise ConnectionNotFound(connection_id) from None
        with self.locks.acquire(connection_id, timeout=0):
            return self._refresh_locked(connection_id, manual)

    def _refresh_locked(self, connection_id: UUID, manual: bool) -> SocialAccountConnectionModel:
        trigger = "manual" if manual else "scheduled"

        # Step 1: validate and mark TOKEN_REFRESHING
        with session_scope(self.session_factory) as session:
            record = self._load(session, connection_id)
            status = ConnectionStatus(record.status)
            if status not in REFRESHABLE_STATUSES:
                raise ConnectionNotRefreshable(
                    f"Connection '{connection_id}' is {status} and cannot be refreshed"
                )

            now = self.clock()
            if not manual and not self.is_due(record, now):
                # Duplicate dispatch of an already refreshed record
                logger.debug("refresh_not_due", connection_id=str(connection_id))
                return record

            platform = Platform(record.platform)
            adapter = self.adapters(platform)

            decision = self.rate_limiter.try_acquire(platform, record.external_account_id)
            if not decision.allowed:
                retry_after = decision.retry_after or 0.0
                record.next_refresh_at = now + timedelta(seconds=retry_after)
                change = apply_status(record, ConnectionStatus.RATE_LIMITED, now)
                session.commit()
                self.publish([change])
                raise RateLimitExceeded(platform, retry_after)

            if adapter.refresh_with_access_token:
                encrypted = record.encrypted_access_token
            else:
                encrypted = record.encrypted_refresh_token

            if not encrypted:
                message = "No refresh credential stored; reconnect required"
                record.next_refresh_at = None
                change = apply_status(record, ConnectionStatus.ERROR, now, error=message)
                session.commit()
                self.publish([change])
                logger.warning(
                    "refresh_missing_credential",
                    connection_id=str(connection_id),
                    platform=platform,
                )
                raise RefreshFailed(message)

            refresh_secret = decrypt_token(encrypted)
            change = apply_status(record, ConnectionStatus.TOKEN_REFRESHING, now)
        self.publish([change])

        logger.info(
            "refresh_started",
            connection_id=str(connection_id),
            platform=platform,
            trigger=trigger,
        )

        # Step 2: outbound call, no transaction open
        outcome: TokenGrant | OAuthAdapterError
        try:
            outcome = adapter.refresh_token(refresh_secret)
        except OAuthAdapterError as e:
            outcome = e
        except Exception as e:
            # The record is already TOKEN_REFRESHING and must leave that state
            logger.exception(
                "refresh_adapter_error",
                connection_id=str(connection_id),
                platform=platform,
            )
            outcome = OAuthAdapterError(
                FailureKind.TRANSIENT,
                f"{platform} refresh failed unexpectedly: {type(e).__name__}",
            )

        # Step 3: commit the outcome
        with session_scope(self.session_factory) as session:
            record = self._load(session, connection_id)
            now = self.clock()

            if isinstance(outcome, TokenGrant):
                self.store_grant(record, outcome, now)
                record.last_refreshed_at = now
                change = apply_status(record, ConnectionStatus.ACTIVE, now)
                session.commit()
                self.publish([change])
                logger.info(
                    "refresh_succeeded",
                    connection_id=str(connection_id),
                    platform=platform,
                    expires_at=record.token_expires_at.isoformat(),
                )
                return record

            failure = outcome
            if failure.kind == FailureKind.PERMANENT:
                record.next_refresh_at = None
                change = apply_status(
                    record,
                    ConnectionStatus.ERROR,
                    now,
                    error=f"Refresh rejected: {failure.message}",
                )
                session.commit()
                self.publish([change])
                logger.warning(
                    "refresh_failed_permanent",
                    connection_id=str(connection_id),
                    platform=platform,
                    error=failure.message,
                )
                raise RefreshFailed(record.last_error or failure.message)

            record.refresh_attempts = (record.refresh_attempts or 0) + 1
            attempts = record.refresh_attempts

            if attempts >= self.max_attempts:
                record.next_refresh_at = None
                change = apply_status(
                    record,
                    ConnectionStatus.ERROR,
                    now,
                    error=f"Refresh failed {attempts} times in a row: {failure.message}",
                )
                session.commit()
                self.publish([change])
                logger.warning(
                    "refresh_retries_exhausted",
                    connection_id=str(connection_id),
                    platform=platform,
                    attempts=attempts,
                    error=failure.message,
                )
                raise RefreshFailed(record.last_error or failure.message)

            delay = self.compute_backoff(attempts)
            record.next_refresh_at = now + timedelta(seconds=delay)
            change = apply_status(record, ConnectionStatus.TOKEN_EXPIRED, now)
            session.commit()
            self.publish([change])
            logger.info(
                "refresh_failed_transient",
                connection_id=str(connection_id),
                platform=platform,
                attempts=attempts,
                retry_in_seconds=round(delay, 1),
                error=failure.message,
            )
            raise RefreshTransientFailure(
                f"Refresh failed temporarily: {failure.message}", retry_in_seconds=delay
            )

    def _load(self, session: Session, connection_id: UUID) -> SocialAccountConnectionModel:
        record = session.get(SocialAccountConnectionModel, connection_id)
        if record is None:
            raise ConnectionNotFound(connection_id)
        return record
