"""Revocation / Disconnect Handler."""

from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from social_link.adapters.oauth.base import OAuthAdapterError
from social_link.config import Settings, get_settings
from social_link.db.models import SocialAccountConnectionModel
from social_link.db.session import session_scope
from social_link.domain.enums import ConnectionStatus, Platform
from social_link.domain.errors import (
    ConnectionNotFound,
    EncryptionError,
    PlatformNotConfigured,
    RevocationFailed,
)
from social_link.logging import get_logger
from social_link.services.encryption import decrypt_token
from social_link.services.locks import LockManager
from social_link.services.rate_limit import RateLimiter
from social_link.services.token_store import (
    AdapterProvider,
    TokenStore,
    apply_status,
    clear_secrets,
)
from social_link.utils.clock import Clock, utc_now

logger = get_logger(__name__)


class DisconnectService:
    """Revokes a connection's tokens and retires the record.

    The record is kept with status DISCONNECTED and its secrets cleared.
    Platform-side revocation is best effort: a failure is logged and the
    disconnect still completes.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        adapters: AdapterProvider,
        token_store: TokenStore,
        rate_limiter: RateLimiter,
        locks: LockManager,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        settings = settings or get_settings()
        self.session_factory = session_factory
        self.adapters = adapters
        self.token_store = token_store
        self.rate_limiter = rate_limiter
        self.locks = locks
        self.clock = clock
        self.lock_timeout = settings.disconnect_lock_timeout_seconds

    def disconnect(self, connection_id: UUID | str) -> SocialAccountConnectionModel:
        """Disconnect a connection. Calling it again is a no-op.

        Raises:
            ConnectionNotFound: No such connection.
            LockTimeout: An in-flight refresh did not finish in time.
        """
        try:
            connection_id = UUID(str(connection_id))
        except ValueError:
            raise ConnectionNotFound(connection_id) from None

        with session_scope(self.session_factory) as session:
            record = self._load(session, connection_id)
            if record.status == ConnectionStatus.DISCONNECTED:
                return record

        with self.locks.acquire(connection_id, timeout=self.lock_timeout):
            return self._disconnect_locked(connection_id)

    def _disconnect_locked(self, connection_id: UUID) -> SocialAccountConnectionModel:
        with session_scope(self.session_factory) as session:
            record = self._load(session, connection_id)
            if record.status == ConnectionStatus.DISCONNECTED:
                return record
            platform = Platform(record.platform)
            external_account_id = record.external_account_id
            encrypted_access_token = record.encrypted_access_token

        if encrypted_access_token:
            self._revoke(connection_id, platform, external_account_id, encrypted_access_token)

        with session_scope(self.session_factory) as session:
            record = self._load(session, connection_id)
            clear_secrets(record)
            change = apply_status(record, ConnectionStatus.DISCONNECTED, self.clock())
        self.token_store.publish([change])

        logger.info(
            "connection_disconnected",
            connection_id=str(connection_id),
            user_id=record.user_id,
            platform=platform,
        )
        return record

    def _revoke(
        self,
        connection_id: UUID,
        platform: Platform,
        external_account_id: str | None,
        encrypted_access_token: str,
    ) -> None:
        decision = self.rate_limiter.try_acquire(platform, external_account_id)
        if not decision.allowed:
            logger.warning(
                "revoke_skipped_rate_limited",
                connection_id=str(connection_id),
                platform=platform,
                retry_after=decision.retry_after,
            )
            return

        try:
            token = decrypt_token(encrypted_access_token)
            if not self.adapters(platform).revoke(token):
                raise RevocationFailed(f"{platform} refused to revoke the token")
        except (OAuthAdapterError, EncryptionError, PlatformNotConfigured, RevocationFailed) as e:
            logger.warning(
                "revoke_failed",
                connection_id=str(connection_id),
                platform=platform,
                error=str(e),
            )
            return

        logger.info("token_revoked", connection_id=str(connection_id), platform=platform)

    def _load(self, session: Session, connection_id: UUID) -> SocialAccountConnectionModel:
        record = session.get(SocialAccountConnectionModel, connection_id)
        if record is None:
            raise ConnectionNotFound(connection_id)
        return record
