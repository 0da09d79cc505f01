"""Authorization Flow Orchestrator.

Drives the OAuth2 authorization code grant for each platform:

- ``initiate`` creates a single-use state (plus a PKCE verifier where the
  platform needs one), persists it with a TTL and returns the consent URL.
- ``handle_callback`` validates the state, exchanges the code, resolves the
  external account and hands the tokens to the Token Store.

A state is consumed when the flow reaches a final outcome (success, denied
consent, permanent failure). Transient failures and rate-limit denials leave
it in place so the same callback can be retried within the TTL.
"""

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from social_link.adapters.oauth import parse_platform
from social_link.adapters.oauth.base import (
    AccountProfile,
    OAuthAdapterError,
    TokenGrant,
    generate_code_verifier,
)
from social_link.config import Settings, get_settings
from social_link.db.models import AuthorizationRequestModel, SocialAccountConnectionModel
from social_link.db.session import session_scope
from social_link.domain.enums import ConnectionStatus, FailureKind, Platform
from social_link.domain.errors import (
    AuthorizationDenied,
    ConnectionNotFound,
    InvalidOrExpiredState,
    RateLimitExceeded,
    TokenExchangeFailed,
    TokenExchangeTransientFailure,
)
from social_link.domain.models import AuthorizationStart, StatusChange
from social_link.logging import get_logger, state_prefix
from social_link.services.locks import LockManager
from social_link.services.rate_limit import RateLimiter
from social_link.services.token_store import AdapterProvider, TokenStore, apply_status
from social_link.utils.clock import Clock, ensure_utc, utc_now

logger = get_logger(__name__)

STATE_BYTES = 32
ABANDONED_RECONNECT_ERROR = "Reconnect was not completed"


class AuthorizationService:
    """Starts connect flows and completes them from platform callbacks."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        adapters: AdapterProvider,
        token_store: TokenStore,
        rate_limiter: RateLimiter,
        locks: LockManager,
        settings: Settings | None = None,
        clock: Clock = utc_now,
        state_factory: Callable[[], str] | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.session_factory = session_factory
        self.adapters = adapters
        self.token_store = token_store
        self.rate_limiter = rate_limiter
        self.locks = locks
        self.clock = clock
        self.state_factory = state_factory or (lambda: secrets.token_urlsafe(STATE_BYTES))
        self.redirect_base_url = settings.oauth_redirect_base_url.rstrip("/")
        self.request_ttl = timedelta(seconds=settings.authorization_request_ttl_seconds)
        self.lock_timeout = settings.disconnect_lock_timeout_seconds

    def redirect_uri_for(self, platform: Platform) -> str:
        return f"{self.redirect_base_url}/{platform}"

    def initiate(
        self,
        user_id: str,
        platform: str | Platform,
        scopes: list[str] | None = None,
        connection_id: UUID | str | None = None,
    ) -> AuthorizationStart:
        """Begin a connect (or reconnect) flow.

        Raises:
            UnsupportedPlatform: Unknown platform.
            RateLimitExceeded: The platform's outbound budget is spent.
            ConnectionNotFound: ``connection_id`` is not this user's connection on this platform.
        """
        platform = parse_platform(platform)
        adapter = self.adapters(platform)

        decision = self.rate_limiter.try_acquire(platform)
        if not decision.allowed:
            raise RateLimitExceeded(platform, decision.retry_after or 0.0)

        state = self.state_factory()
        code_verifier = generate_code_verifier() if adapter.uses_pkce else None
        redirect_uri = self.redirect_uri_for(platform)
        now = self.clock()
        expires_at = now + self.request_ttl

        request = AuthorizationRequestModel(
            state=state,
            platform=str(platform),
            user_id=user_id,
            redirect_uri=redirect_uri,
            code_verifier=code_verifier,
            scopes=list(scopes) if scopes else None,
            created_at=now,
            expires_at=expires_at,
        )

        change: StatusChange | None = None
        if connection_id is not None:
            try:
                connection_id = UUID(str(connection_id))
            except ValueError:
                raise ConnectionNotFound(connection_id) from None
            with self.locks.acquire(connection_id, timeout=self.lock_timeout):
                with session_scope(self.session_factory) as session:
                    change = self._begin_reconnect(session, request, connection_id, now)
                    session.add(request)
        else:
            with session_scope(self.session_factory) as session:
                session.add(request)
        self.token_store.publish([change])

        authorize_url = adapter.build_authorize_url(
            state, redirect_uri, scopes=scopes, code_verifier=code_verifier
        )
        logger.info(
            "authorization_initiated",
            user_id=user_id,
            platform=platform,
            state=state_prefix(state),
            reconnect=connection_id is not None,
            pkce=code_verifier is not None,
        )
        return AuthorizationStart(authorize_url=authorize_url, state=state, expires_at=expires_at)

    def _begin_reconnect(
        self,
        session: Session,
        request: AuthorizationRequestModel,
        connection_id: UUID,
        now: datetime,
    ) -> StatusChange | None:
        record = session.get(SocialAccountConnectionModel, connection_id)
        if (
            record is None
            or record.user_id != request.user_id
            or record.platform != request.platform
        ):
            raise ConnectionNotFound(connection_id)

        request.connection_id = record.id
        if record.status == ConnectionStatus.PENDING_AUTH:
            # A reconnect is already pending; carry its remembered status forward
            request.previous_status = session.execute(
                select(AuthorizationRequestModel.previous_status)
                .where(AuthorizationRequestModel.connection_id == record.id)
                .order_by(AuthorizationRequestModel.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            return None

        request.previous_status = record.status
        return apply_status(record, ConnectionStatus.PENDING_AUTH, now)

    def handle_callback(
        self,
        platform: str | Platform,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> SocialAccountConnectionModel:
        """Complete a connect flow from the platform's redirect.

        Raises:
            AuthorizationDenied: The user declined consent.
            InvalidOrExpiredState: Unknown, used, expired or mismatched state.
            RateLimitExceeded: The platform's outbound budget is spent; retry the callback.
            TokenExchangeFailed: The platform rejected the code; the record is in ERROR.
            TokenExchangeTransientFailure: Retryable failure; the state is still valid.
        """
        platform = parse_platform(platform)

        if error:
            self._consume_denied(platform, state, error)
            raise AuthorizationDenied(error, error_description)

        if not state or not code:
            raise InvalidOrExpiredState("Callback is missing the code or state parameter")

        request = self._load_request(platform, state)
        adapter = self.adapters(platform)

        decision = self.rate_limiter.try_acquire(platform)
        if not decision.allowed:
            raise RateLimitExceeded(platform, decision.retry_after or 0.0)

        try:
            grant = adapter.exchange_code(code, request.redirect_uri, request.code_verifier)
            profile = adapter.fetch_profile(grant.access_token)
        except OAuthAdapterError as e:
            if e.kind == FailureKind.TRANSIENT:
                logger.warning(
                    "authorization_exchange_transient",
                    platform=platform,
                    state=state_prefix(state),
                    error=e.message,
                )
                raise TokenExchangeTransientFailure(
                    f"{platform} is temporarily unavailable; retry the callback"
                ) from e
            self._record_exchange_failure(request, e)
            raise TokenExchangeFailed(f"{platform} rejected the authorization: {e.message}") from e

        return self._complete(request, grant, profile)

    def _load_request(self, platform: Platform, state: str) -> AuthorizationRequestModel:
        now = self.clock()
        with session_scope(self.session_factory) as session:
            request = session.get(AuthorizationRequestModel, state)
            if request is None:
                logger.warning("authorization_state_unknown", state=state_prefix(state))
                raise InvalidOrExpiredState()

            if ensure_utc(request.expires_at) <= now:
                changes = self._restore_reconnect(session, request, now)
                session.delete(request)
                session.commit()
                self.token_store.publish(changes)
                logger.warning("authorization_state_expired", state=state_prefix(state))
                raise InvalidOrExpiredState()

            if request.platform != str(platform):
                logger.warning(
                    "authorization_state_platform_mismatch",
                    state=state_prefix(state),
                    expected=request.platform,
                    received=str(platform),
                )
                raise InvalidOrExpiredState()

            session.expunge(request)
            return request

    def _claim(self, session: Session, state: str) -> bool:
        """Delete the request; False when another callback consumed it first."""
        result = session.execute(
            delete(AuthorizationRequestModel).where(AuthorizationRequestModel.state == state)
        )
        return result.rowcount == 1

    def _complete(
        self,
        request: AuthorizationRequestModel,
        grant: TokenGrant,
        profile: AccountProfile,
    ) -> SocialAccountConnectionModel:
        platform = Platform(request.platform)
        if not grant.scopes and request.scopes:
            grant.scopes = list(request.scopes)

        with session_scope(self.session_factory) as session:
            if not self._claim(session, request.state):
                logger.warning("authorization_state_replayed", state=state_prefix(request.state))
                raise InvalidOrExpiredState()

            reconnect = None
            if request.connection_id is not None:
                reconnect = session.get(SocialAccountConnectionModel, request.connection_id)

            record, changes = self.token_store.upsert_connection(
                session, request.user_id, platform, profile, grant, reconnect=reconnect
            )
            if reconnect is not None and reconnect.id != record.id:
                # The user authorized a different account than the one being reconnected
                changes.extend(self._restore_reconnect(session, request, self.clock()))
        self.token_store.publish(changes)

        logger.info(
            "authorization_completed",
            connection_id=str(record.id),
            user_id=request.user_id,
            platform=platform,
            external_account_id=record.external_account_id,
        )
        return record

    def _record_exchange_failure(
        self, request: AuthorizationRequestModel, failure: OAuthAdapterError
    ) -> None:
        """Consume the request and leave an ERROR record the UI can offer a retry on."""
        platform = Platform(request.platform)
        message = f"Authorization failed: {failure.message}"
        now = self.clock()

        with session_scope(self.session_factory) as session:
            if not self._claim(session, request.state):
                raise InvalidOrExpiredState()

            record = None
            if request.connection_id is not None:
                record = session.get(SocialAccountConnectionModel, request.connection_id)
            if record is None:
                record = self.token_store.find_placeholder(session, request.user_id, platform)
            if record is None:
                record = SocialAccountConnectionModel(
                    user_id=request.user_id,
                    platform=str(platform),
                    status=ConnectionStatus.PENDING_AUTH,
                    refresh_attempts=0,
                    created_at=now,
                )
                session.add(record)
                session.flush()

            record.next_refresh_at = None
            change = apply_status(record, ConnectionStatus.ERROR, now, error=message)
        self.token_store.publish([change])

        logger.warning(
            "authorization_exchange_failed",
            connection_id=str(record.id),
            user_id=request.user_id,
            platform=platform,
            state=state_prefix(request.state),
            error=failure.message,
        )

    def _consume_denied(self, platform: Platform, state: str | None, error: str) -> None:
        changes: list[StatusChange] = []
        with session_scope(self.session_factory) as session:
            request = session.get(AuthorizationRequestModel, state) if state else None
            if request is not None and request.platform == str(platform):
                changes = self._restore_reconnect(session, request, self.clock())
                session.delete(request)
        self.token_store.publish(changes)

        logger.info(
            "authorization_denied",
            platform=platform,
            state=state_prefix(state),
            error=error,
        )

    def _restore_reconnect(
        self, session: Session, request: AuthorizationRequestModel, now: datetime
    ) -> list[StatusChange]:
        """Put a reconnecting record back into the status it had before ``initiate``."""
        if request.connection_id is None or not request.previous_status:
            return []

        record = session.get(SocialAccountConnectionModel, request.connection_id)
        if record is None or record.status != ConnectionStatus.PENDING_AUTH:
            return []

        previous = ConnectionStatus(request.previous_status)
        expires_at = ensure_utc(record.token_expires_at)
        lapsed = expires_at is None or expires_at <= now
        if previous == ConnectionStatus.TOKEN_REFRESHING or (
            previous == ConnectionStatus.ACTIVE and lapsed
        ):
            # The sweep skipped the record while it was pending; refresh it next
            previous = ConnectionStatus.TOKEN_EXPIRED
            record.next_refresh_at = now
        error = ABANDONED_RECONNECT_ERROR if previous == ConnectionStatus.ERROR else None
        change = apply_status(record, previous, now, error=error)
        return [change] if change else []

    def purge_expired_requests(self) -> int:
        """Delete requests past their TTL. Returns how many were removed."""
        now = self.clock()
        changes: list[StatusChange] = []

        with session_scope(self.session_factory) as session:
            expired = (
                session.execute(
                    select(AuthorizationRequestModel).where(
                        AuthorizationRequestModel.expires_at <= now
                    )
                )
                .scalars()
                .all()
            )
            for request in expired:
                changes.extend(self._restore_reconnect(session, request, now))
                session.delete(request)
        self.token_store.publish(changes)

        if expired:
            logger.info("authorization_requests_purged", count=len(expired))
        return len(expired)
