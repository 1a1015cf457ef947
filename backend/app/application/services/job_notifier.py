import json
import logging
from typing import Protocol

from redis.exceptions import RedisError

from app.core.config import settings
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.observability.metrics import measure_redis

logger = logging.getLogger(__name__)


class JobStatusNotifier(Protocol):
    def job_changed(self, snapshot: dict) -> None: ...


class NullJobStatusNotifier:
    def job_changed(self, snapshot: dict) -> None:
        return None


class RedisJobStatusNotifier:
    """Fans committed job snapshots out to ``<prefix>:<user_id>`` for live status views."""

    def __init__(self, redis_client=None, *, channel_prefix: str | None = None) -> None:
        self._redis = redis_client
        self.channel_prefix = channel_prefix or settings.job_status_channel_prefix

    def _client(self):
        if self._redis is None:
            self._redis = get_redis_client()
        return self._redis

    def channel_for(self, user_id: str) -> str:
        return f"{self.channel_prefix}:{user_id}"

    def job_changed(self, snapshot: dict) -> None:
        channel = self.channel_for(snapshot["user_id"])
        try:
            with measure_redis("job_status_publish"):
                self._client().publish(channel, json.dumps(snapshot))
        except RedisError as exc:
            logger.warning(
                "job_status_notify_failed job_id=%s status=%s reason=%s",
                snapshot.get("job_id"),
                snapshot.get("status"),
                exc,
            )
