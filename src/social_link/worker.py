"""Celery worker configuration."""

from celery import Celery

from social_link.config import settings
from social_link.logging import setup_logging

# Setup logging before anything else
setup_logging()

# Create Celery app
celery_app = Celery(
    "social_link",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Task execution
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=120,
    task_soft_time_limit=90,
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
    # Result backend
    result_expires=3600,  # 1 hour
    # Task routing
    task_routes={
        "refresh_sweep": {"queue": "default"},
        "refresh_connection": {"queue": "refresh"},
        "purge_authorization_requests": {"queue": "default"},
    },
    # Beat scheduler (for periodic tasks)
    beat_schedule={
        # Token refresh sweep
        "refresh-sweep": {
            "task": "refresh_sweep",
            "schedule": float(settings.refresh_sweep_interval_seconds),
            "options": {"queue": "default"},
        },
        # Expired authorization requests, once per request TTL
        "purge-authorization-requests": {
            "task": "purge_authorization_requests",
            "schedule": float(settings.authorization_request_ttl_seconds),
            "options": {"queue": "default"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["social_link.jobs"])
