import asyncio
import logging
from datetime import UTC, datetime
from time import perf_counter

from app.application.services.publication_dispatcher import PublicationDispatcher
from app.application.services.publication_sweeper import purge_expired_jobs, run_sweep
from app.core.config import settings
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.db.session import SessionLocal
from app.infrastructure.observability.metrics import measure_redis
from workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="workers.tasks.dispatch_publication_jobs")
def dispatch_publication_jobs() -> dict:
    started_at = perf_counter()
    summary = asyncio.run(PublicationDispatcher().run_cycle())
    payload = summary.as_dict()
    payload["duration_ms"] = int((perf_counter() - started_at) * 1000)
    if summary.dequeued:
        logger.info(
            "publication_dispatch_cycle dequeued=%s executed=%s completed=%s failed=%s duration_ms=%s",
            summary.dequeued,
            summary.executed,
            summary.completed,
            summary.failed,
            payload["duration_ms"],
        )
    return payload


@celery_app.task(name="workers.tasks.sweep_publication_jobs")
def sweep_publication_jobs() -> dict:
    return run_sweep().as_dict()


@celery_app.task(name="workers.tasks.purge_publication_jobs")
def purge_publication_jobs() -> dict:
    with SessionLocal() as db:
        purged = purge_expired_jobs(db, retention_days=settings.job_retention_days)
        db.commit()
    logger.info("publication_jobs_purged purged=%s retention_days=%s", purged, settings.job_retention_days)
    return {"purged": purged}


@celery_app.task(name="workers.tasks.ping")
def ping() -> str:
    return "pong"


@celery_app.task(name="workers.tasks.worker_heartbeat")
def worker_heartbeat() -> dict:
    redis_client = get_redis_client()
    now = datetime.now(UTC).isoformat()
    with measure_redis("worker_heartbeat_set"):
        redis_client.set(
            settings.worker_heartbeat_key,
            now,
            ex=max(15, settings.worker_heartbeat_ttl_seconds),
        )
    return {"heartbeat_at": now}
