"""Connection status-change notifications.

Subscribers register per user and are called synchronously, after the state
change has been committed, with a ``StatusChange``. Changes can also be
mirrored to Redis pub/sub (``social-link:status:{user_id}``) for consumers
in other processes.
"""

import json
import threading
from collections import defaultdict
from collections.abc import Callable

import redis

from social_link.config import Settings, get_settings
from social_link.domain.models import StatusChange
from social_link.logging import get_logger

logger = get_logger(__name__)

REDIS_CHANNEL_PREFIX = "social-link:status"

StatusCallback = Callable[[StatusChange], None]


def channel_for(user_id: str) -> str:
    return f"{REDIS_CHANNEL_PREFIX}:{user_id}"


class StatusNotifier:
    """Fans status changes out to in-process subscribers and optionally Redis."""

    def __init__(self, redis_client: "redis.Redis | None" = None) -> None:
        self._subscribers: dict[str, list[StatusCallback]] = defaultdict(list)
        self._lock = threading.Lock()
        self.redis_client = redis_client

    def subscribe(self, user_id: str, callback: StatusCallback) -> None:
        with self._lock:
            self._subscribers[user_id].append(callback)

    def unsubscribe(self, user_id: str, callback: StatusCallback) -> None:
        with self._lock:
            callbacks = self._subscribers.get(user_id, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(user_id, None)

    def publish(self, change: StatusChange) -> None:
        logger.info(
            "connection_status_changed",
            connection_id=str(change.connection_id),
            user_id=change.user_id,
            platform=str(change.platform),
            old_status=str(change.old_status) if change.old_status else None,
            new_status=str(change.new_status),
        )

        with self._lock:
            callbacks = list(self._subscribers.get(change.user_id, []))

        for callback in callbacks:
            try:
                callback(change)
            except Exception:
                # A failing subscriber must not break the state transition
                logger.exception(
                    "status_subscriber_failed", connection_id=str(change.connection_id)
                )

        if self.redis_client is not None:
            try:
                self.redis_client.publish(
                    channel_for(change.user_id), json.dumps(change.to_dict())
                )
            except redis.RedisError as e:
                logger.warning(
                    "status_redis_publish_failed",
                    connection_id=str(change.connection_id),
                    error=str(e),
                )


def create_notifier(settings: Settings | None = None) -> StatusNotifier:
    """Build the notifier, with the Redis mirror when enabled."""
    settings = settings or get_settings()
    client = None
    if settings.notifications_redis_enabled:
        client = redis.Redis.from_url(settings.redis_url)
    return StatusNotifier(redis_client=client)
