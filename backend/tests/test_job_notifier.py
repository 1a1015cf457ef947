import json

from redis.exceptions import ConnectionError as RedisConnectionError

from app.application.services.job_notifier import RedisJobStatusNotifier


class FakeRedis:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.published: list[tuple[str, str]] = []

    def publish(self, channel: str, message: str) -> int:
        if self.error is not None:
            raise self.error
        self.published.append((channel, message))
        return 1


def test_snapshot_is_published_on_user_channel():
    redis_client = FakeRedis()
    notifier = RedisJobStatusNotifier(redis_client, channel_prefix="publication_jobs")

    notifier.job_changed({"job_id": "job-1", "user_id": "user-1", "status": "completed"})

    channel, message = redis_client.published[0]
    assert channel == "publication_jobs:user-1"
    assert json.loads(message)["status"] == "completed"


def test_redis_outage_does_not_raise():
    notifier = RedisJobStatusNotifier(FakeRedis(error=RedisConnectionError("down")))
    notifier.job_changed({"job_id": "job-1", "user_id": "user-1", "status": "failed"})
