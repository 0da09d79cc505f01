"""Connection Registry: the read surface every other subsystem uses.

Summaries never carry token values. Before anything is returned, ACTIVE
records whose token has already lapsed are demoted to TOKEN_EXPIRED, so a
reader never sees an ACTIVE connection with an expired token.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from social_link.db.models import SocialAccountConnectionModel
from social_link.db.session import session_scope
from social_link.domain.enums import ConnectionStatus, Platform
from social_link.domain.errors import ConnectionNotFound
from social_link.domain.models import ConnectionCredentials, ConnectionSummary, StatusChange
from social_link.logging import get_logger
from social_link.services.encryption import decrypt_token
from social_link.services.notifications import StatusCallback, StatusNotifier
from social_link.services.token_store import apply_status
from social_link.utils.clock import Clock, ensure_utc, utc_now

logger = get_logger(__name__)


def to_summary(record: SocialAccountConnectionModel) -> ConnectionSummary:
    """Secret-free view of a connection record."""
    return ConnectionSummary(
        id=record.id,
        user_id=record.user_id,
        platform=Platform(record.platform),
        status=ConnectionStatus(record.status),
        external_account_id=record.external_account_id,
        external_account_handle=record.external_account_handle,
        scopes=list(record.scopes or []),
        token_expires_at=ensure_utc(record.token_expires_at),
        last_error=record.last_error,
        last_refreshed_at=ensure_utc(record.last_refreshed_at),
        next_refresh_at=ensure_utc(record.next_refresh_at),
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
    )


class ConnectionRegistry:
    """Queries connections and relays status-change subscriptions."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        notifier: StatusNotifier,
        clock: Clock = utc_now,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier
        self.clock = clock

    def list(self, user_id: str, include_disconnected: bool = False) -> list[ConnectionSummary]:
        """All of a user's connections, oldest first."""
        with session_scope(self.session_factory) as session:
            query = (
                select(SocialAccountConnectionModel)
                .where(SocialAccountConnectionModel.user_id == user_id)
                .order_by(SocialAccountConnectionModel.created_at)
            )
            if not include_disconnected:
                query = query.where(
                    SocialAccountConnectionModel.status != ConnectionStatus.DISCONNECTED
                )
            records = session.execute(query).scalars().all()

            changes = [self._demote_if_stale(record) for record in records]
            summaries = [to_summary(record) for record in records]
        self._publish(changes)
        return summaries

    def get(self, connection_id: UUID | str) -> ConnectionSummary:
        """Raises ConnectionNotFound for unknown ids."""
        with session_scope(self.session_factory) as session:
            record = self._load(session, connection_id)
            change = self._demote_if_stale(record)
            summary = to_summary(record)
        self._publish([change])
        return summary

    def get_credentials(self, connection_id: UUID | str) -> ConnectionCredentials:
        """Decrypted access token for in-process consumers (publishers, analytics).

        Raises:
            ConnectionNotFound: Unknown id, or the connection is not ACTIVE.
        """
        with session_scope(self.session_factory) as session:
            record = self._load(session, connection_id)
            change = self._demote_if_stale(record)
            if record.status != ConnectionStatus.ACTIVE or not record.encrypted_access_token:
                status = record.status
                credentials = None
            else:
                credentials = ConnectionCredentials(
                    connection_id=record.id,
                    platform=Platform(record.platform),
                    external_account_id=record.external_account_id,
                    access_token=decrypt_token(record.encrypted_access_token),
                    expires_at=ensure_utc(record.token_expires_at),
                )
        self._publish([change])

        if credentials is None:
            logger.info(
                "credentials_unavailable", connection_id=str(connection_id), status=str(status)
            )
            raise ConnectionNotFound(connection_id)
        return credentials

    def subscribe(self, user_id: str, callback: StatusCallback) -> None:
        self.notifier.subscribe(user_id, callback)

    def unsubscribe(self, user_id: str, callback: StatusCallback) -> None:
        self.notifier.unsubscribe(user_id, callback)

    def _load(self, session: Session, connection_id: UUID | str) -> SocialAccountConnectionModel:
        try:
            key = UUID(str(connection_id))
        except ValueError:
            raise ConnectionNotFound(connection_id) from None
        record = session.get(SocialAccountConnectionModel, key)
        if record is None:
            raise ConnectionNotFound(connection_id)
        return record

    def _demote_if_stale(self, record: SocialAccountConnectionModel) -> StatusChange | None:
        if record.status != ConnectionStatus.ACTIVE:
            return None
        expires_at = ensure_utc(record.token_expires_at)
        now = self.clock()
        if expires_at is not None and expires_at > now:
            return None

        record.next_refresh_at = now
        logger.info("connection_token_lapsed", connection_id=str(record.id))
        return apply_status(record, ConnectionStatus.TOKEN_EXPIRED, now)

    def _publish(self, changes: Iterable[StatusChange | None]) -> None:
        for change in changes:
            if change is not None:
                self.notifier.publish(change)
