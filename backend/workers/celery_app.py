from celery import Celery
from celery.schedules import schedule
from kombu import Queue

from app.core.config import settings

celery_app = Celery(
    "publication_pipeline",
    broker=settings.cache_redis_url,
    backend=settings.cache_redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue="publishing",
    task_queues=(
        Queue("publishing"),
        Queue("scheduler"),
    ),
    task_routes={
        "workers.tasks.dispatch_publication_jobs": {"queue": "publishing"},
        "workers.tasks.sweep_publication_jobs": {"queue": "scheduler"},
        "workers.tasks.purge_publication_jobs": {"queue": "scheduler"},
        "workers.tasks.worker_heartbeat": {"queue": "scheduler"},
    },
    beat_schedule={
        "publication-dispatch": {
            "task": "workers.tasks.dispatch_publication_jobs",
            "schedule": schedule(settings.dispatch_interval_seconds),
            "options": {"queue": "publishing", "expires": settings.dispatch_interval_seconds},
        },
        "publication-sweep": {
            "task": "workers.tasks.sweep_publication_jobs",
            "schedule": schedule(settings.sweep_interval_seconds),
            "options": {"queue": "scheduler"},
        },
        "publication-purge-daily": {
            "task": "workers.tasks.purge_publication_jobs",
            "schedule": schedule(settings.purge_interval_seconds),
            "options": {"queue": "scheduler"},
        },
        "worker-heartbeat-every-15s": {
            "task": "workers.tasks.worker_heartbeat",
            "schedule": schedule(15.0),
            "options": {"queue": "scheduler"},
        },
    },
)

celery_app.autodiscover_tasks(["workers"])
