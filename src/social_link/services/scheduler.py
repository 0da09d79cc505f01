"""Refresh Scheduler: periodic sweep over connections that need new tokens."""

from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, sessionmaker

from social_link.db.models import SocialAccountConnectionModel
from social_link.db.session import session_scope
from social_link.domain.enums import ConnectionStatus
from social_link.domain.errors import SocialLinkError
from social_link.domain.models import StatusChange, SweepResult
from social_link.logging import get_logger
from social_link.services.token_store import TokenStore, apply_status
from social_link.utils.clock import Clock, utc_now

logger = get_logger(__name__)

Dispatcher = Callable[[UUID], None]


def demote_stale_active(
    session: Session, now: datetime
) -> tuple[list[UUID], list[StatusChange]]:
    """Move ACTIVE records whose token has lapsed to TOKEN_EXPIRED.

    The demoted records become due for refresh immediately.
    """
    stale = (
        session.execute(
            select(SocialAccountConnectionModel).where(
                SocialAccountConnectionModel.status == ConnectionStatus.ACTIVE,
                or_(
                    SocialAccountConnectionModel.token_expires_at.is_(None),
                    SocialAccountConnectionModel.token_expires_at <= now,
                ),
            )
        )
        .scalars()
        .all()
    )

    changes: list[StatusChange] = []
    for record in stale:
        record.next_refresh_at = now
        change = apply_status(record, ConnectionStatus.TOKEN_EXPIRED, now)
        if change:
            changes.append(change)
    return [record.id for record in stale], changes


def recover_stalled_refreshes(
    session: Session, now: datetime, stalled_after: timedelta
) -> tuple[list[UUID], list[StatusChange]]:
    """Release records left in TOKEN_REFRESHING by a refresh that never finished.

    A worker that dies between marking the record and recording the outcome
    leaves it there; once the lock would have expired the record is treated
    as expired and retried.
    """
    stalled = (
        session.execute(
            select(SocialAccountConnectionModel).where(
                SocialAccountConnectionModel.status == ConnectionStatus.TOKEN_REFRESHING,
                SocialAccountConnectionModel.updated_at <= now - stalled_after,
            )
        )
        .scalars()
        .all()
    )

    changes: list[StatusChange] = []
    for record in stalled:
        logger.warning("refresh_stalled_recovered", connection_id=str(record.id))
        record.next_refresh_at = now
        change = apply_status(record, ConnectionStatus.TOKEN_EXPIRED, now)
        if change:
            changes.append(change)
    return [record.id for record in stalled], changes


class RefreshScheduler:
    """Finds connections due for refresh and hands them to a dispatcher.

    The default dispatcher refreshes inline. The Celery worker passes one
    that enqueues a task per connection instead.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        token_store: TokenStore,
        clock: Clock = utc_now,
    ) -> None:
        self.session_factory = session_factory
        self.token_store = token_store
        self.clock = clock

    def due_connection_ids(self, session: Session) -> list[UUID]:
        now = self.clock()
        horizon = now + self.token_store.refresh_threshold(None, None)

        # Widest possible threshold in SQL, exact per-record threshold below
        active = (
            session.execute(
                select(SocialAccountConnectionModel).where(
                    SocialAccountConnectionModel.status == ConnectionStatus.ACTIVE,
                    SocialAccountConnectionModel.token_expires_at.is_not(None),
                    SocialAccountConnectionModel.token_expires_at <= horizon,
                )
            )
            .scalars()
            .all()
        )
        due: list[UUID] = []
        for record in active:
            if self.token_store.is_due(record, now):
                due.append(record.id)

        retrying = session.execute(
            select(SocialAccountConnectionModel.id).where(
                SocialAccountConnectionModel.status.in_(
                    [ConnectionStatus.TOKEN_EXPIRED, ConnectionStatus.RATE_LIMITED]
                ),
                or_(
                    SocialAccountConnectionModel.next_refresh_at.is_(None),
                    SocialAccountConnectionModel.next_refresh_at <= now,
                ),
            )
        )
        due.extend(retrying.scalars().all())
        return due

    def sweep(self, dispatch: Dispatcher | None = None) -> SweepResult:
        """Run one sweep. Refresh errors are recorded on the records, never raised."""
        dispatch = dispatch or self._refresh_inline
        result = SweepResult()

        now = self.clock()
        with session_scope(self.session_factory) as session:
            expired, changes = demote_stale_active(session, now)
            recovered, recovered_changes = recover_stalled_refreshes(
                session, now, self.token_store.stalled_after
            )
            result.expired.extend(expired)
            result.recovered.extend(recovered)
        self.token_store.publish(changes + recovered_changes)

        with session_scope(self.session_factory) as session:
            due = self.due_connection_ids(session)

        for connection_id in due:
            dispatch(connection_id)
            result.dispatched.append(connection_id)

        logger.info(
            "refresh_sweep_completed",
            expired=len(result.expired),
            recovered=len(result.recovered),
            dispatched=result.dispatched_count,
        )
        return result

    def _refresh_inline(self, connection_id: UUID) -> None:
        try:
            self.token_store.refresh(connection_id)
        except SocialLinkError as e:
            # Outcome already recorded on the connection
            logger.info(
                "sweep_refresh_not_completed",
                connection_id=str(connection_id),
                error=e.code,
            )
