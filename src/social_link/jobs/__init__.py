"""Celery job definitions."""

from social_link.jobs.refresh import (
    purge_authorization_requests_task,
    refresh_connection_task,
    refresh_sweep_task,
)

__all__ = [
    "purge_authorization_requests_task",
    "refresh_connection_task",
    "refresh_sweep_task",
]
