"""Celery tasks for the token refresh lifecycle."""

from typing import Any
from uuid import UUID

from social_link.domain.errors import RefreshInProgress, SocialLinkError
from social_link.logging import get_logger
from social_link.services.container import get_container
from social_link.worker import celery_app

logger = get_logger(__name__)


def enqueue_refresh(connection_id: UUID) -> None:
    """Sweep dispatcher: one refresh task per due connection."""
    refresh_connection_task.delay(str(connection_id))


@celery_app.task(bind=True, name="refresh_sweep")
def refresh_sweep_task(self: Any) -> dict[str, Any]:
    """Find connections that need new tokens and fan out refresh tasks.

    Runs on the beat schedule (``REFRESH_SWEEP_INTERVAL_SECONDS``).
    """
    task_id = self.request.id
    logger.info("refresh_sweep_started", task_id=task_id)

    result = get_container().scheduler.sweep(dispatch=enqueue_refresh)

    return {
        "success": True,
        "expired": len(result.expired),
        "recovered": len(result.recovered),
        "dispatched": result.dispatched_count,
    }


@celery_app.task(bind=True, name="refresh_connection")
def refresh_connection_task(self: Any, connection_id: str) -> dict[str, Any]:
    """Refresh one connection.

    Failures are already recorded on the connection (status, last_error,
    next retry time), so they are reported in the result instead of being
    raised for Celery to retry.
    """
    task_id = self.request.id
    logger.info("refresh_connection_started", task_id=task_id, connection_id=connection_id)

    try:
        record = get_container().token_store.refresh(connection_id)
    except RefreshInProgress:
        logger.info("refresh_connection_skipped", task_id=task_id, connection_id=connection_id)
        return {"success": False, "connection_id": connection_id, "skipped": True}
    except SocialLinkError as e:
        logger.info(
            "refresh_connection_failed",
            task_id=task_id,
            connection_id=connection_id,
            error=e.code,
        )
        return {
            "success": False,
            "connection_id": connection_id,
            "error": e.code,
            "message": e.message,
        }

    return {
        "success": True,
        "connection_id": connection_id,
        "status": str(record.status),
        "token_expires_at": record.token_expires_at.isoformat()
        if record.token_expires_at
        else None,
    }


@celery_app.task(bind=True, name="purge_authorization_requests")
def purge_authorization_requests_task(self: Any) -> dict[str, Any]:
    """Delete authorization requests whose state has expired."""
    purged = get_container().authorization.purge_expired_requests()
    return {"success": True, "purged": purged}
